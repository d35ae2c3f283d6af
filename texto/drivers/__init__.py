"""texto drivers."""

from .base import PollableSender, Sender, supports_polling
from .fake import FakeSender, PollableFakeSender
from .telnyx import TelnyxSender
from .twilio import TwilioSender

__all__ = [
    "FakeSender",
    "PollableFakeSender",
    "PollableSender",
    "Sender",
    "TelnyxSender",
    "TwilioSender",
    "supports_polling",
]
