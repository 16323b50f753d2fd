from enum import Enum
from typing import Optional

class MbcError(Exception):
    """Base class for all errors raised by the composer."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class ProbeErrorKind(str, Enum):
    NO_VIDEO_STREAM = "NO_VIDEO_STREAM"
    MALFORMED_OUTPUT = "MALFORMED_OUTPUT"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"

class ProbeError(MbcError):
    def __init__(self, kind: ProbeErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

class ProcessErrorKind(str, Enum):
    BINARY_NOT_FOUND = "BINARY_NOT_FOUND"
    NON_ZERO_EXIT = "NON_ZERO_EXIT"
    SPAWN_FAILURE = "SPAWN_FAILURE"

class ProcessError(MbcError):
    def __init__(
        self,
        kind: ProcessErrorKind,
        message: str,
        exit_code: Optional[int] = None,
        stderr_tail: str = ""
    ):
        super().__init__(message)
        self.kind = kind
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail

class PlanErrorKind(str, Enum):
    INVALID_TRIM = "INVALID_TRIM"

class PlanError(MbcError):
    def __init__(self, kind: PlanErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

class InputErrorKind(str, Enum):
    WRONG_INPUT_COUNT = "WRONG_INPUT_COUNT"
    UNKNOWN_DURATION = "UNKNOWN_DURATION"

class InputError(MbcError):
    def __init__(self, kind: InputErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

class CancelledError(MbcError):
    """Raised at a stage boundary after the operator requested a stop."""

    def __init__(self, message: str = "Operation cancelled by user"):
        super().__init__(message)
