from __future__ import annotations

from enum import Enum


class MonitorState(str, Enum):
    IDLE = "IDLE"
    MONITORING = "MONITORING"

    def can_enter(self, target: object) -> bool:
        return target in _NEXT_STATES.get(self, ())


_NEXT_STATES: dict[MonitorState, tuple[MonitorState, ...]] = {
    MonitorState.IDLE: (MonitorState.MONITORING,),
    MonitorState.MONITORING: (MonitorState.IDLE,),
}
