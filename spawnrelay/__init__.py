"""Sub-agent spawn-and-announce orchestration over an agent gateway."""

from .config import SpawnConfig, load_config
from .spawn import SpawnOptions, SpawnOrchestrator, SpawnResult

__all__ = [
    "SpawnConfig",
    "SpawnOptions",
    "SpawnOrchestrator",
    "SpawnResult",
    "load_config",
]
