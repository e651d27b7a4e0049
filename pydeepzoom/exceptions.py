"""Error conditions raised by the deep zoom engine."""


class DeepZoomError(Exception):
    """Base class for errors raised by pydeepzoom."""


class InvalidCoordinate(DeepZoomError, ValueError):
    """A center coordinate string is not a finite decimal number."""

    def __init__(self, value):
        super().__init__(f"invalid decimal coordinate: {value!r}")
        self.value = value


class TransportError(DeepZoomError, RuntimeError):
    """The reference orbit construction channel failed."""
