"""Domain errors for the presentation runtime.

Every error carries a stable ``code`` that is sent to presenter views and
mapped to an HTTP status by the REST routes.
"""
from typing import Optional


class LiveDeckError(Exception):
    """Base class for all runtime errors."""

    code = "LiveDeckError"
    status_code = 400

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.details}


class OutOfRange(LiveDeckError):
    code = "OutOfRange"
    status_code = 404

    def __init__(self, index: int, slide_count: int) -> None:
        super().__init__(
            f"Slide index {index} is outside [0, {slide_count})",
            index=index,
            slide_count=slide_count,
        )


class CodeBlockNotFound(LiveDeckError):
    code = "CodeBlockNotFound"
    status_code = 404

    def __init__(self, code_block_id: str) -> None:
        super().__init__(f"Unknown code block: {code_block_id}", code_block_id=code_block_id)


class AlreadyRunning(LiveDeckError):
    code = "AlreadyRunning"
    status_code = 409

    def __init__(self, code_block_id: str, run_id: str) -> None:
        super().__init__(
            f"Code block {code_block_id} is already running as {run_id}",
            code_block_id=code_block_id,
            run_id=run_id,
        )


class NotRunning(LiveDeckError):
    code = "NotRunning"
    status_code = 409

    def __init__(self, code_block_id: str) -> None:
        super().__init__(f"Code block {code_block_id} is not running", code_block_id=code_block_id)


class RunNotFound(LiveDeckError):
    code = "RunNotFound"
    status_code = 404

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Unknown run: {run_id}", run_id=run_id)


class RunAlreadyTerminal(LiveDeckError):
    code = "RunAlreadyTerminal"
    status_code = 409

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id} has already ended", run_id=run_id)


class RunStillRunning(LiveDeckError):
    code = "RunStillRunning"
    status_code = 409

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id} is still running; tail it instead", run_id=run_id)


class ProcessSpawnFailed(LiveDeckError):
    code = "ProcessSpawnFailed"
    status_code = 502

    def __init__(self, code_block_id: str, reason: str, run_id: Optional[str] = None) -> None:
        super().__init__(
            f"Could not start code block {code_block_id}: {reason}",
            code_block_id=code_block_id,
            run_id=run_id,
        )


class DriverNotFound(ProcessSpawnFailed):
    code = "DriverNotFound"

    def __init__(self, code_block_id: str, driver: str, run_id: Optional[str] = None) -> None:
        super().__init__(code_block_id, f"no driver configured for '{driver}'", run_id=run_id)
        self.details["driver"] = driver


class SyncGapDetected(LiveDeckError):
    """Raised client-side when an event arrives out of sequence."""

    code = "SyncGapDetected"

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            f"Expected event {expected}, received {received}; resync required",
            expected=expected,
            received=received,
        )


class Forbidden(LiveDeckError):
    code = "Forbidden"
    status_code = 403

    def __init__(self, role: str, command: str) -> None:
        super().__init__(f"Role '{role}' may not issue '{command}'", role=role, command=command)


class DeckLoadError(LiveDeckError):
    code = "DeckLoadError"
    status_code = 422
