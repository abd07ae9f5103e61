"""par2 command construction and execution."""

from .commands import (
    MAX_BLOCK_COUNT,
    CreateCommandBuilder,
    RepairCommandBuilder,
    ResourceLimits,
    VerifyCommandBuilder,
)
from .runner import Par2Result, Par2Runner

__all__ = [
    "MAX_BLOCK_COUNT",
    "CreateCommandBuilder",
    "RepairCommandBuilder",
    "ResourceLimits",
    "VerifyCommandBuilder",
    "Par2Result",
    "Par2Runner",
]
