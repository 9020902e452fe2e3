from __future__ import annotations


class StudioError(Exception):
    """Base error. `message` is safe to show to the user as-is."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProviderError(StudioError):
    pass


class SafetyBlockedError(ProviderError):
    pass


class ImageDecodeError(StudioError):
    pass


class SessionBusyError(StudioError):
    pass


class NotFoundError(StudioError):
    pass
