from __future__ import annotations

from dataclasses import dataclass

from gpumonitor.core.modes import MonitorState


@dataclass
class MonitorStateMachine:
    state: MonitorState = MonitorState.IDLE

    @property
    def monitoring(self) -> bool:
        return self.state == MonitorState.MONITORING

    def transition(self, target: MonitorState) -> bool:
        """Move to ``target``; returns False when already there."""
        if self.state == target:
            return False
        if not self.state.can_enter(target):
            raise ValueError(f"Invalid transition: {self.state.value} -> {target}")
        self.state = target
        return True
