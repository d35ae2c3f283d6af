"""
texto: SMS/MMS delivery with status reconciliation.

Sends messages through interchangeable providers (Twilio, Telnyx, or any
driver registered at runtime) and reconciles each message's status as it
arrives out of order from webhooks and from periodic polling.

Quick start::

    from texto import DriverManager, InMemoryMessageRepository, Texto, TextoConfig

    config = TextoConfig.from_env()
    texto = Texto(config, DriverManager(config), InMemoryMessageRepository())
    result = texto.send("+15551234567", "Your code is 123456")
    if result.succeeded:
        print(f"Provider id: {result.provider_message_id}")

Queued sends::

    config = TextoConfig(queue=True, twilio=TwilioConfig(...))
    texto = Texto(config, DriverManager(config), repo, dispatcher=ThreadPoolDispatcher())
    result = texto.send("+15551234567", "hi")  # status=QUEUED, row completed later

Status polling (run once a minute from your scheduler)::

    summary = texto.poll_statuses()

Webhooks (after parsing the provider payload in your web layer)::

    texto.process_webhook(WebhookProcessingResult.status_update(
        "twilio", "SM123", map_status("twilio", "delivered"),
    ))

For testing::

    from texto import PollableFakeSender

    sender = PollableFakeSender()
    texto.drivers.extend("fake", lambda config: sender)
    texto.send("+15551234567", "test", driver="fake")
    assert len(sender.sent) == 1

Module overview
---------------
- ``types``       - MessageStatus (with rank), results, the stored Message row
- ``config``      - Frozen configuration dataclasses and ``from_env``
- ``status``      - Provider status mapping and forward-only progression
- ``retry``       - Exponential backoff for provider calls
- ``drivers/``    - TwilioSender, TelnyxSender, FakeSender, PollableFakeSender
- ``manager``     - DriverManager with runtime driver registration
- ``polling``     - PollingParameterResolver for ``fetch_status`` arguments
- ``repository``  - MessageRepository contract, InMemoryMessageRepository
- ``client``      - Texto orchestrator (direct and queued sends, webhooks)
- ``queue``       - SendMessageJob and job dispatchers
- ``jobs``        - StatusPollJob reconciliation
- ``events``      - MessageSent/Failed/Received/StatusUpdated notifications
"""

from .client import Texto
from .config import PollingConfig, RetryConfig, TelnyxConfig, TextoConfig, TwilioConfig
from .drivers import (
    FakeSender,
    PollableFakeSender,
    PollableSender,
    Sender,
    TelnyxSender,
    TwilioSender,
    supports_polling,
)
from .errors import DriverAlreadyRegistered, SendFailed, TextoError, UnsupportedDriver
from .events import (
    EventDispatcher,
    MessageFailed,
    MessageReceived,
    MessageSent,
    MessageStatusUpdated,
)
from .jobs import PollSummary, StatusPollJob
from .manager import DriverManager
from .phone import normalize_e164
from .polling import PollingParameterResolver
from .queue import InlineDispatcher, JobDispatcher, SendMessageJob, ThreadPoolDispatcher
from .repository import InMemoryMessageRepository, MessageRepository
from .retry import exponential
from .status import Progression, map_status, resolve_progression
from .types import (
    TERMINAL_STATUSES,
    TRANSIENT_STATUSES,
    Direction,
    Driver,
    Message,
    MessageStatus,
    SentMessageResult,
    WebhookProcessingResult,
)

__all__ = [
    # Orchestrator
    "Texto",
    # Config
    "PollingConfig",
    "RetryConfig",
    "TelnyxConfig",
    "TextoConfig",
    "TwilioConfig",
    # Drivers
    "DriverManager",
    "FakeSender",
    "PollableFakeSender",
    "PollableSender",
    "Sender",
    "TelnyxSender",
    "TwilioSender",
    "supports_polling",
    # Errors
    "DriverAlreadyRegistered",
    "SendFailed",
    "TextoError",
    "UnsupportedDriver",
    # Events
    "EventDispatcher",
    "MessageFailed",
    "MessageReceived",
    "MessageSent",
    "MessageStatusUpdated",
    # Reconciliation
    "PollSummary",
    "PollingParameterResolver",
    "Progression",
    "StatusPollJob",
    "map_status",
    "resolve_progression",
    # Deferred sends
    "InlineDispatcher",
    "JobDispatcher",
    "SendMessageJob",
    "ThreadPoolDispatcher",
    # Storage
    "InMemoryMessageRepository",
    "MessageRepository",
    # Types
    "Direction",
    "Driver",
    "Message",
    "MessageStatus",
    "SentMessageResult",
    "TERMINAL_STATUSES",
    "TRANSIENT_STATUSES",
    "WebhookProcessingResult",
    # Utilities
    "exponential",
    "normalize_e164",
]
