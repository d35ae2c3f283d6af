"""Message store contract and an in-memory implementation.

The core never talks to a database directly; it goes through
:class:`MessageRepository`. :class:`InMemoryMessageRepository` honours the
same invariants and is what the test suite (and small apps) use.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

from .status import resolve_progression
from .types import (
    AMBIGUITY_FLAGS,
    LAST_POLL_AT,
    POLL_ATTEMPTS,
    POLL_BOOKKEEPING_KEYS,
    RESERVED_METADATA_KEYS,
    TELNYX_COST_AMOUNT,
    TELNYX_PARTS,
    UPGRADABLE_STATUSES,
    Direction,
    Message,
    MessageStatus,
    SentMessageResult,
    WebhookProcessingResult,
    utcnow,
)

logger = logging.getLogger(__name__)


class MessageRepository(Protocol):
    """Persistence operations the core relies on."""

    def store_sent(self, result: SentMessageResult) -> Message:
        """Insert an outbound row for a send outcome (final or provisional)."""
        ...

    def store_inbound(self, result: WebhookProcessingResult) -> Message:
        """Insert an inbound row from a webhook."""
        ...

    def store_status(self, result: WebhookProcessingResult) -> Message | None:
        """Apply a webhook status update, keyed by provider message id.

        Returns None when no row carries that provider id.
        """
        ...

    def update_polled_status(
        self,
        message: Message,
        status: MessageStatus,
        extra_metadata: Mapping[str, Any] | None = None,
    ) -> Message:
        """Persist a poll outcome, keyed by primary key.

        Increments ``poll_attempts`` exactly once and stamps ``last_poll_at``.
        """
        ...

    def upgrade_queued(self, message_id: Any, result: SentMessageResult) -> Message | None:
        """Complete a provisional Queued/Ambiguous row by primary key.

        Returns None if the row is missing or already past Queued/Ambiguous.
        """
        ...

    def find_poll_candidates(
        self,
        statuses: Iterable[MessageStatus],
        created_before: datetime,
        *,
        with_provider_id: bool,
        limit: int,
    ) -> list[Message]:
        """Rows in ``statuses`` created at or before ``created_before``, oldest id first."""
        ...


def _with_poll_defaults(metadata: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(metadata)
    merged.setdefault(POLL_ATTEMPTS, 0)
    merged.setdefault(LAST_POLL_AT, None)
    return merged


def _without(metadata: Mapping[str, Any], keys: frozenset[str]) -> dict[str, Any]:
    return {key: value for key, value in metadata.items() if key not in keys}


def _segments(metadata: Mapping[str, Any]) -> int | None:
    value = metadata.get(TELNYX_PARTS)
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _cost(metadata: Mapping[str, Any]) -> str | None:
    value = metadata.get(TELNYX_COST_AMOUNT)
    return str(value) if value is not None else None


class InMemoryMessageRepository:
    """Thread-safe in-process :class:`MessageRepository`.

    Rows are returned by reference, the way an ORM hands back live
    instances. Primary keys are positive integers, so ``0`` is free to
    serve as the "not persisted" sentinel.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._rows: dict[int, Message] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # ── Inspection helpers ────────────────────────────────────────

    def get(self, message_id: Any) -> Message | None:
        with self._lock:
            return self._rows.get(message_id)

    def all(self) -> list[Message]:
        with self._lock:
            return [self._rows[key] for key in sorted(self._rows)]

    def add(self, message: Message) -> Message:
        """Insert a prebuilt row, assigning an id when it has none."""
        with self._lock:
            if message.id is None:
                message.id = next(self._ids)
            self._rows[message.id] = message
            return message

    # ── MessageRepository ─────────────────────────────────────────

    def store_sent(self, result: SentMessageResult) -> Message:
        now = self._clock()
        metadata = _with_poll_defaults(result.metadata)
        with self._lock:
            message = Message(
                id=next(self._ids),
                direction=result.direction,
                driver=result.driver,
                to=result.to,
                from_=result.from_,
                body=result.body,
                media_urls=list(result.media_urls),
                status=result.status,
                provider_message_id=result.provider_message_id,
                error_code=result.error_code,
                metadata=metadata,
                segments_count=_segments(metadata),
                cost_estimate=_cost(metadata),
                created_at=now,
                sent_at=now,
            )
            self._rows[message.id] = message
        logger.debug("Stored sent message id=%s provider_id=%s", message.id, message.provider_message_id)
        return message

    def store_inbound(self, result: WebhookProcessingResult) -> Message:
        now = self._clock()
        with self._lock:
            message = Message(
                id=next(self._ids),
                direction=Direction.RECEIVED,
                driver=result.driver,
                to=result.to,
                from_=result.from_,
                body=result.body,
                media_urls=list(result.media_urls),
                status=result.status or MessageStatus.RECEIVED,
                provider_message_id=result.provider_message_id,
                metadata=dict(result.metadata),
                created_at=now,
                received_at=now,
            )
            self._rows[message.id] = message
        logger.debug("Stored inbound message id=%s provider_id=%s", message.id, message.provider_message_id)
        return message

    def store_status(self, result: WebhookProcessingResult) -> Message | None:
        if not result.provider_message_id:
            return None
        with self._lock:
            message = next(
                (row for row in self._rows.values() if row.provider_message_id == result.provider_message_id),
                None,
            )
            if message is None:
                return None
            previous = message.status
            decision = resolve_progression(previous, result.status)
            message.metadata = {**message.metadata, **_without(result.metadata, RESERVED_METADATA_KEYS)}
            if decision.status is not previous:
                message.status = decision.status
                message.status_updated_at = self._clock()
        if decision.status is previous and result.status is not previous:
            logger.debug(
                "Ignored status regression id=%s current=%s reported=%s",
                message.id,
                previous.value,
                result.status.value,
            )
        else:
            logger.debug("Updated message status id=%s status=%s previous=%s", message.id, message.status.value, previous.value)
        return message

    def update_polled_status(
        self,
        message: Message,
        status: MessageStatus,
        extra_metadata: Mapping[str, Any] | None = None,
    ) -> Message:
        now = self._clock()
        with self._lock:
            row = self._rows.get(message.id, message)
            previous = row.status
            metadata = dict(row.metadata)
            metadata[POLL_ATTEMPTS] = row.poll_attempts + 1
            metadata[LAST_POLL_AT] = now.isoformat()
            metadata.update(extra_metadata or {})
            row.metadata = metadata
            row.status = status
            row.status_updated_at = now
        logger.debug(
            "Polled status update id=%s status=%s previous=%s poll_attempts=%s",
            row.id,
            status.value,
            previous.value,
            metadata[POLL_ATTEMPTS],
        )
        return row

    def upgrade_queued(self, message_id: Any, result: SentMessageResult) -> Message | None:
        now = self._clock()
        with self._lock:
            message = self._rows.get(message_id)
            if message is None:
                return None
            if message.status not in UPGRADABLE_STATUSES:
                logger.debug("Skipped upgrade of non-queued row id=%s status=%s", message_id, message.status.value)
                return None

            previous = message.status
            message.status = result.status
            message.provider_message_id = result.provider_message_id
            message.error_code = result.error_code
            metadata = _without(message.metadata, AMBIGUITY_FLAGS)
            metadata.update(_without(result.metadata, POLL_BOOKKEEPING_KEYS))
            if previous is MessageStatus.AMBIGUOUS:
                metadata["upgraded_from"] = previous.value
            message.metadata = _with_poll_defaults(metadata)
            if TELNYX_PARTS in result.metadata:
                message.segments_count = _segments(result.metadata)
            if TELNYX_COST_AMOUNT in result.metadata:
                message.cost_estimate = _cost(result.metadata)
            if message.sent_at is None:
                message.sent_at = now
            message.status_updated_at = now
        logger.debug(
            "Upgraded queued message id=%s provider_id=%s status=%s previous=%s",
            message.id,
            message.provider_message_id,
            message.status.value,
            previous.value,
        )
        return message

    def find_poll_candidates(
        self,
        statuses: Iterable[MessageStatus],
        created_before: datetime,
        *,
        with_provider_id: bool,
        limit: int,
    ) -> list[Message]:
        if limit <= 0:
            return []
        wanted = set(statuses)
        with self._lock:
            rows = [
                self._rows[key]
                for key in sorted(self._rows)
                if self._rows[key].status in wanted
                and self._rows[key].created_at <= created_before
                and bool(self._rows[key].provider_message_id) is with_provider_id
            ]
        return rows[:limit]
