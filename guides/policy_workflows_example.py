"""Example running the built-in security workflows concurrently.

Set ``POLICYFLOW_GENERATION_BACKEND=agent`` and ``generation.model`` in
``config.yaml`` to draft policies with a pydantic-ai agent instead of the
markdown template.
"""

import asyncio
import logging

from policyflow import create_orchestrator, load_config
from policyflow.config import configure_logging
from policyflow.workflows import COMPLIANCE_VALIDATION, POLICY_GENERATION, THREAT_RESPONSE
from policyflow.workflows.compliance_validation import compliance_validation_state
from policyflow.workflows.policy_generation import policy_generation_state
from policyflow.workflows.threat_response import threat_response_state

logger = logging.getLogger(__name__)


async def main():
    config = load_config()
    configure_logging(config)
    orchestrator = create_orchestrator(config)

    policy = await orchestrator.start(
        POLICY_GENERATION,
        policy_generation_state(
            "AWS IAM",
            {"compliance": "SOC2", "environment": "production", "business_unit": "trading"},
        ),
    )
    print(policy.state.data.policy_draft)

    results = await asyncio.gather(
        orchestrator.start(
            THREAT_RESPONSE,
            threat_response_state(
                "T-2024-001",
                {"severity": "critical", "exploited": True, "affected_services": ["IAM"]},
            ),
        ),
        orchestrator.start(
            COMPLIANCE_VALIDATION,
            compliance_validation_state("iam-baseline", policy.state.data.policy_draft, "SOC2"),
        ),
    )
    for result in results:
        logger.info(f"{result.graph_name}: {result.state.data.status}")

    for record in orchestrator.get_history(limit=5):
        print(f"{record.graph_name}\t{record.status.value}\t{record.total_steps} steps")
    print(orchestrator.get_statistics().to_dict())


if __name__ == "__main__":
    asyncio.run(main())
