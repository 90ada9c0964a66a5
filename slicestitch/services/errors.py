class CompositionError(RuntimeError):
    """Base class for failures that abort an export."""


class DecodeError(CompositionError):
    """Raised when a source reference cannot be fetched or decoded."""

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(f"Could not decode image {reference!r}: {reason}")
        self.reference = reference
        self.reason = reason


class SurfaceError(CompositionError):
    """Raised when a drawing surface cannot be allocated."""


class EncodeError(CompositionError):
    """Raised when encoding the final raster produced no data."""
