from __future__ import annotations


class MonitorError(Exception):
    pass


class TailFileNotFoundError(MonitorError, FileNotFoundError):
    def __init__(self, path: object) -> None:
        super().__init__(f"File not found: {path}")
        self.path = str(path)


class RowValidationError(MonitorError, ValueError):
    def __init__(self, message: str, reason: str = "invalid_row") -> None:
        super().__init__(message)
        self.reason = reason


class PanelMessageError(MonitorError, ValueError):
    pass
