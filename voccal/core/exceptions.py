"""
Custom exceptions for the Voccal voice filter engine.
"""


class VoccalError(Exception):
    """Base exception for all Voccal errors."""

    def __init__(self, message: str, code: str = "VOCCAL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class UnknownFilterError(VoccalError):
    """Requested filter id is not in the catalog."""

    def __init__(self, filter_id: str) -> None:
        self.filter_id = filter_id
        super().__init__(f"Unknown filter: {filter_id!r}", code="UNKNOWN_FILTER")


class DecodeError(VoccalError):
    """Input bytes are not a decodable audio format."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="DECODE_ERROR")


class RenderError(VoccalError):
    """Offline rendering failed after it started."""

    def __init__(self, message: str, code: str = "RENDER_ERROR") -> None:
        super().__init__(message, code=code)


class RenderBusyError(RenderError):
    """A render is already in flight on this renderer."""

    def __init__(self, message: str = "A render is already in progress") -> None:
        super().__init__(message, code="RENDER_BUSY")


class DeviceError(VoccalError):
    """Live playback device failed to open, start, or was denied."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="DEVICE_ERROR")


class ValidationError(VoccalError):
    """Imported data failed validation."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
