"""Email rendering and outbound mail transports."""

from echoboard.notifications.templates import TEMPLATES, RenderedEmail, render
from echoboard.notifications.transport import (
    MailTransport,
    MockMailTransport,
    ResendTransport,
    SentMessage,
)

__all__ = [
    "TEMPLATES",
    "MailTransport",
    "MockMailTransport",
    "RenderedEmail",
    "ResendTransport",
    "SentMessage",
    "render",
]
