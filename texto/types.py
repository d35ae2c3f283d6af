"""Core types for the texto messaging library."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class MessageStatus(str, Enum):
    """Canonical status of a message, shared by every driver."""

    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    RECEIVED = "received"
    FAILED = "failed"
    UNDELIVERED = "undelivered"
    AMBIGUOUS = "ambiguous"  # provider id never obtained after polling

    @property
    def rank(self) -> int:
        """Forward-only progression rank.

        A transient status may only move to a strictly higher rank.
        Terminal statuses share the top rank with ``RECEIVED``, which is
        only reachable through inbound webhooks.
        """
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


_STATUS_RANK: dict[MessageStatus, int] = {
    MessageStatus.AMBIGUOUS: 0,
    MessageStatus.QUEUED: 1,
    MessageStatus.SENDING: 2,
    MessageStatus.SENT: 3,
    MessageStatus.DELIVERED: 4,
    MessageStatus.FAILED: 4,
    MessageStatus.UNDELIVERED: 4,
    MessageStatus.RECEIVED: 4,
}

TERMINAL_STATUSES: frozenset[MessageStatus] = frozenset(
    {MessageStatus.DELIVERED, MessageStatus.FAILED, MessageStatus.UNDELIVERED}
)

TRANSIENT_STATUSES: tuple[MessageStatus, ...] = (
    MessageStatus.QUEUED,
    MessageStatus.SENDING,
    MessageStatus.SENT,
)

# Rows in these states may still be completed by a deferred send.
UPGRADABLE_STATUSES: frozenset[MessageStatus] = frozenset({MessageStatus.QUEUED, MessageStatus.AMBIGUOUS})


class Direction(str, Enum):
    SENT = "sent"
    RECEIVED = "received"


class Driver(str, Enum):
    """Built-in provider names. Registered drivers use plain strings."""

    TWILIO = "twilio"
    TELNYX = "telnyx"


def normalize_driver(driver: str | Driver) -> str:
    """Canonical lower-case driver name for an enum member or a string."""
    name = driver.value if isinstance(driver, Driver) else str(driver)
    return name.strip().lower()


# ── Reserved metadata keys ────────────────────────────────────────────

POLL_ATTEMPTS = "poll_attempts"
LAST_POLL_AT = "last_poll_at"
CONVERSATION_SID = "conversation_sid"
TELNYX_PARTS = "telnyx_parts"
TELNYX_COST_AMOUNT = "telnyx_cost_amount"

# Written only by the poll job; never taken from webhook or send metadata.
POLL_BOOKKEEPING_KEYS: frozenset[str] = frozenset({POLL_ATTEMPTS, LAST_POLL_AT})

RESERVED_METADATA_KEYS: frozenset[str] = POLL_BOOKKEEPING_KEYS | {CONVERSATION_SID}

# Flags left by the poll job on a row it gave up on.
AMBIGUITY_FLAGS: frozenset[str] = frozenset(
    {
        "poll_terminal",
        "provider_id_missing",
        "provider_id_missing_pending",
        "provider_id_missing_sending",
        "provider_id_missing_sent",
    }
)


# ── Results ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class SentMessageResult:
    """Outcome of a single send attempt.

    A failed attempt is an ordinary value with ``status=FAILED`` rather
    than an exception, so callers always get a result back for expected
    provider failures.
    """

    driver: str
    to: str
    body: str
    status: MessageStatus
    from_: str | None = None
    media_urls: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    direction: Direction = Direction.SENT

    def __post_init__(self) -> None:
        object.__setattr__(self, "driver", normalize_driver(self.driver))
        object.__setattr__(self, "media_urls", tuple(self.media_urls))
        object.__setattr__(self, "metadata", dict(self.metadata))

    @property
    def succeeded(self) -> bool:
        return self.status not in {MessageStatus.FAILED, MessageStatus.UNDELIVERED}

    @classmethod
    def failed(
        cls,
        *,
        driver: str,
        to: str,
        body: str,
        error_message: str,
        from_: str | None = None,
        media_urls: Iterable[str] = (),
        metadata: Mapping[str, Any] | None = None,
        error_code: str | None = "send_failed",
    ) -> SentMessageResult:
        return cls(
            driver=driver,
            to=to,
            body=body,
            status=MessageStatus.FAILED,
            from_=from_,
            media_urls=tuple(media_urls),
            metadata=dict(metadata or {}),
            error_code=error_code,
            error_message=error_message,
        )

    def to_dict(self) -> dict[str, Any]:
        """Structured representation for logging and serialization."""
        return {
            "driver": self.driver,
            "direction": self.direction.value,
            "to": self.to,
            "from": self.from_,
            "body": self.body,
            "media_urls": list(self.media_urls),
            "metadata": dict(self.metadata),
            "status": self.status.value,
            "provider_message_id": self.provider_message_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass(frozen=True, slots=True)
class WebhookProcessingResult:
    """Normalized webhook outcome: an inbound message or a status update, never both.

    Build it with :meth:`inbound` or :meth:`status_update`.
    """

    driver: str
    direction: Direction
    status: MessageStatus
    provider_message_id: str | None = None
    from_: str | None = None
    to: str | None = None
    body: str | None = None
    media_urls: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_inbound(self) -> bool:
        return self.direction is Direction.RECEIVED

    @classmethod
    def inbound(
        cls,
        driver: str,
        *,
        from_: str,
        to: str,
        body: str | None,
        media_urls: Iterable[str] = (),
        metadata: Mapping[str, Any] | None = None,
        provider_message_id: str | None = None,
    ) -> WebhookProcessingResult:
        return cls(
            driver=normalize_driver(driver),
            direction=Direction.RECEIVED,
            status=MessageStatus.RECEIVED,
            provider_message_id=provider_message_id,
            from_=from_,
            to=to,
            body=body,
            media_urls=tuple(media_urls),
            metadata=dict(metadata or {}),
        )

    @classmethod
    def status_update(
        cls,
        driver: str,
        provider_message_id: str | None,
        status: MessageStatus,
        metadata: Mapping[str, Any] | None = None,
    ) -> WebhookProcessingResult:
        return cls(
            driver=normalize_driver(driver),
            direction=Direction.SENT,
            status=status,
            provider_message_id=provider_message_id,
            metadata=dict(metadata or {}),
        )


# ── Persisted row ─────────────────────────────────────────────────────


@dataclass
class Message:
    """A stored message row as seen by the reconciliation core."""

    id: Any
    direction: Direction
    driver: str
    to: str | None
    body: str | None
    status: MessageStatus
    from_: str | None = None
    media_urls: list[str] = field(default_factory=list)
    provider_message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    segments_count: int | None = None
    cost_estimate: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    sent_at: datetime | None = None
    received_at: datetime | None = None
    status_updated_at: datetime | None = None

    @property
    def poll_attempts(self) -> int:
        try:
            return int(self.metadata.get(POLL_ATTEMPTS) or 0)
        except (TypeError, ValueError):
            return 0

    @property
    def last_poll_at(self) -> datetime | None:
        """Last poll time, or None when missing or malformed."""
        return parse_timestamp(self.metadata.get(LAST_POLL_AT))


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Ignoring malformed timestamp: %r", value)
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
