"""Exception hierarchy for Labor Tracker.

Every error raised by the store, the validator, the codec and the device
layer derives from ``LaborTrackerError`` and carries a message that can be
shown to the user as-is.
"""


class LaborTrackerError(Exception):
    """Base class for all Labor Tracker errors."""


class ConflictError(LaborTrackerError):
    """Raised when starting an interval while another one is open."""

    def __init__(self, message: str = "A contraction is already being timed") -> None:
        super().__init__(message)


class NoOpenIntervalError(LaborTrackerError):
    """Raised when ending an interval while none is open."""

    def __init__(self, message: str = "No contraction is being timed") -> None:
        super().__init__(message)


class InvalidDurationError(LaborTrackerError):
    """Raised for a duration that is not a positive whole number of seconds."""


class InvalidFormatError(LaborTrackerError):
    """Raised for a duration string that does not match ``M:SS``."""


class InvalidIntensityError(LaborTrackerError):
    """Raised for an intensity outside 1-5."""


class IndexOutOfRangeError(LaborTrackerError):
    """Raised when an index does not address an editable interval."""


class MalformedSnapshotError(LaborTrackerError):
    """Raised when an imported payload fails validation.

    Attributes:
        reason: Short description of the first failed check.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid backup data: {reason}")


class PayloadTooLargeError(LaborTrackerError):
    """Raised when a compact payload exceeds the transport size limit.

    Attributes:
        size: Length of the rejected transport string.
        limit: Configured maximum length.
    """

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            f"Too much data for a QR code ({size} > {limit} characters). "
            "Try reducing the number of contractions or notes."
        )


class DeviceAccessError(LaborTrackerError):
    """Raised when the camera is unavailable or access is denied."""


class StaleConfirmationError(LaborTrackerError):
    """Raised when confirming a token that was used, cancelled or outdated."""
