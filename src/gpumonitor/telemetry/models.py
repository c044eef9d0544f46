from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Series(str, Enum):
    GPU = "gpu"
    MEMORY = "memory"


@dataclass(frozen=True)
class GpuSample:
    timestamp: str
    utilization: float
    # Percent of Memory_Total in use
    memory: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "utilization": self.utilization,
            "memory": self.memory,
        }


@dataclass(frozen=True)
class MemorySample:
    timestamp: str
    # MB, converted from the KB columns
    usage: float
    virtual_usage: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "usage": self.usage,
            "virtualUsage": self.virtual_usage,
        }


Sample = GpuSample | MemorySample
