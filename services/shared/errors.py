from __future__ import annotations


class PipelineError(Exception):
    """Base error for the image notification pipeline."""


class MalformedEnvelope(PipelineError):
    """A queue or topic delivery did not have the expected envelope shape."""


class UnknownImageType(PipelineError):
    """The object key carries no file suffix."""


class UnsupportedImageType(PipelineError):
    """The object key suffix is not an accepted image type."""


class StoreWriteFailure(PipelineError):
    """The key-value store rejected or failed an image record write."""


class NotificationDeliveryFailure(PipelineError):
    """The email notifier could not deliver a message."""
