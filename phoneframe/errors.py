"""Error kinds raised or recorded by an export."""


class ExportError(Exception):
    """Base class; ``kind`` is the name surfaced to the user."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class NoSourceLoaded(ExportError):
    pass


class SessionBusy(ExportError):
    pass


class NoSupportedCodec(ExportError):
    pass


class CaptureUnavailable(ExportError):
    pass


class EncoderFault(ExportError):
    pass


class TransientFrameReadError(ExportError):
    """A single source frame could not be read; never aborts a session."""
