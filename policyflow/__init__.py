"""Policyflow: conditional workflow graphs and instance orchestration."""

from .config import PolicyflowConfig, load_config
from .constants import END
from .contracts import (
    HistoryRecord,
    InstanceStatus,
    WorkflowResult,
    WorkflowState,
    WorkflowStatistics,
)
from .errors import (
    InvalidGraphError,
    MaxIterationsExceededError,
    StepExecutionError,
    UnknownGraphError,
    UnroutableStateError,
    WorkflowCancelledError,
    WorkflowError,
)
from .execute import CancellationToken, GraphExecutor
from .graph import GraphBuilder, WorkflowDefinition
from .orchestrator import WorkflowOrchestrator
from .workflows import create_orchestrator

__version__ = "0.1.0"
__all__ = [
    "END",
    "CancellationToken",
    "GraphBuilder",
    "GraphExecutor",
    "HistoryRecord",
    "InstanceStatus",
    "PolicyflowConfig",
    "WorkflowDefinition",
    "WorkflowOrchestrator",
    "WorkflowResult",
    "WorkflowState",
    "WorkflowStatistics",
    "create_orchestrator",
    "load_config",
    "WorkflowError",
    "InvalidGraphError",
    "UnknownGraphError",
    "UnroutableStateError",
    "StepExecutionError",
    "MaxIterationsExceededError",
    "WorkflowCancelledError",
]
