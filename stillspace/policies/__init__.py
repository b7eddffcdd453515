from stillspace.policies.executor import DEFAULT_STRATEGIES, ExecutionResult, PolicyExecutor
from stillspace.policies.strategies import PolicyContext, PolicyResult, Source, is_storable

__all__ = [
    "DEFAULT_STRATEGIES",
    "ExecutionResult",
    "PolicyContext",
    "PolicyExecutor",
    "PolicyResult",
    "Source",
    "is_storable",
]
