"""Shared defaults for policyflow."""

DEFAULT_MAX_ITERATIONS = 5
DEFAULT_HISTORY_LIMIT = 1000
DEFAULT_HISTORY_PAGE_SIZE = 50

# Outcome used for steps wired with an unconditional edge.
DEFAULT_OUTCOME = "default"

# Marker accepted in successor lists; equivalent to an empty list.
END = "__end__"
