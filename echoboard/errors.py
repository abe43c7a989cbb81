"""Exception hierarchy for the notification pipeline."""


class EchoBoardError(Exception):
    """Base class for all EchoBoard errors."""


class ConfigurationError(EchoBoardError):
    """Required configuration is missing or invalid. Fatal at startup."""


class InvalidTransitionError(EchoBoardError):
    """A feedback status change was refused by the lifecycle guard."""

    def __init__(self, current: str, requested: str, reason: str):
        super().__init__(reason)
        self.current = current
        self.requested = requested
        self.reason = reason


class FeedbackNotFoundError(EchoBoardError):
    """The storage collaborator has no feedback record with the given id."""


class QueueError(EchoBoardError):
    """The queue transport failed or returned an unexpected reply."""


class MailDeliveryError(EchoBoardError):
    """The outbound mail transport rejected the message or was unreachable."""


class UnknownJobTypeError(EchoBoardError):
    """A handler received a job type it has no dispatch entry for."""
