from .extraction import (
    CODE_STRATEGIES,
    ExtractionStrategy,
    await_selector,
    extract_first,
    read_value,
)
from .resource_policy import ALLOW_ALL, DEFAULT_POLICY, ResourcePolicy

__all__ = [
    "ALLOW_ALL",
    "CODE_STRATEGIES",
    "DEFAULT_POLICY",
    "ExtractionStrategy",
    "ResourcePolicy",
    "await_selector",
    "extract_first",
    "read_value",
]
