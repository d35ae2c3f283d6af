"""Status polling for messages stuck in transient states.

Webhooks can be delayed, lost or never configured. :class:`StatusPollJob`
is meant to be run on a fixed cadence (e.g. once a minute) by an external
scheduler, which must ensure at most one run at a time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from .config import PollingConfig
from .drivers.base import supports_polling
from .errors import TextoError, UnsupportedDriver
from .manager import DriverManager
from .polling import PollingParameterResolver
from .repository import MessageRepository
from .status import resolve_progression
from .types import TRANSIENT_STATUSES, Message, MessageStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PollSummary:
    """Counts for one polling run."""

    checked: int = 0
    polled: int = 0


class StatusPollJob:
    """Polls providers for rows in ``queued``/``sending``/``sent`` and applies forward-only progression.

    Per run, each examined row gets exactly one ``update_polled_status``
    call, which bumps its ``poll_attempts`` and ``last_poll_at``. That is
    what makes the attempt caps and backoff window converge.
    """

    def __init__(
        self,
        repository: MessageRepository,
        drivers: DriverManager,
        config: PollingConfig,
        *,
        resolver: PollingParameterResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._drivers = drivers
        self._config = config
        self._resolver = resolver or PollingParameterResolver()
        self._clock = clock

    def run(self) -> PollSummary:
        if not self._config.enabled:
            return PollSummary()

        now = self._clock()
        candidates = self._candidates(now)
        if not candidates:
            return PollSummary()

        polled = 0
        for message in candidates:
            if self._poll(message, now):
                polled += 1

        if polled:
            logger.info("Texto status polling run completed: checked=%s polled=%s", len(candidates), polled)
        return PollSummary(checked=len(candidates), polled=polled)

    def _candidates(self, now: datetime) -> list[Message]:
        """Rows without a provider id first, then rows with one, up to the batch limit."""
        created_before = now - timedelta(seconds=self._config.min_age_seconds)
        batch = self._config.batch_limit
        candidates = self._repository.find_poll_candidates(
            TRANSIENT_STATUSES,
            created_before,
            with_provider_id=False,
            limit=batch,
        )
        remaining = batch - len(candidates)
        if remaining > 0:
            candidates += self._repository.find_poll_candidates(
                TRANSIENT_STATUSES,
                created_before,
                with_provider_id=True,
                limit=remaining,
            )
        return candidates

    def _poll(self, message: Message, now: datetime) -> bool:
        """Examine one row. Returns True if the row was updated."""
        attempts = message.poll_attempts
        if message.status == MessageStatus.QUEUED and attempts >= self._config.queued_max_attempts:
            return False
        if attempts >= self._config.max_attempts:
            return False

        last_poll_at = message.last_poll_at
        # Absolute distance, so a stamp ahead of this clock does not stall the row.
        if last_poll_at is not None and abs((now - last_poll_at).total_seconds()) < self._config.backoff_seconds:
            return False

        sender = self._resolve_sender(message)
        if sender is None or not supports_polling(sender):
            return False

        if not message.provider_message_id:
            self._handle_missing_provider_id(message, attempts)
            return True

        args = self._resolver.args_for(message.driver, message)
        try:
            reported = sender.fetch_status(*args)
        except Exception as exc:
            logger.warning(
                "Status poll fetch failed: id=%s driver=%s provider_id=%s error=%s",
                message.id,
                message.driver,
                message.provider_message_id,
                exc,
            )
            self._repository.update_polled_status(message, message.status, {"poll_note": "fetch-error"})
            return True

        if reported is None:
            self._repository.update_polled_status(message, message.status, {"poll_note": "no-status-returned"})
            return True

        decision = resolve_progression(message.status, reported)
        extra: dict[str, Any] = {}
        if decision.terminal:
            extra["poll_terminal"] = True
        else:
            extra["poll_transient"] = reported.value
            if decision.promoted:
                extra["poll_promoted"] = True
        self._repository.update_polled_status(message, decision.status, extra)
        return True

    def _resolve_sender(self, message: Message) -> Any:
        if not self._drivers.knows(message.driver):
            return None
        try:
            return self._drivers.sender(message.driver)
        except UnsupportedDriver:
            return None
        except TextoError as exc:
            logger.warning("Status poll could not build driver %s: %s", message.driver, exc)
            return None

    def _handle_missing_provider_id(self, message: Message, attempts: int) -> None:
        """No provider id means nothing to fetch; count the attempt and give up at the cap."""
        next_attempt = attempts + 1
        if message.status == MessageStatus.QUEUED:
            if next_attempt >= self._config.queued_max_attempts:
                self._repository.update_polled_status(
                    message,
                    MessageStatus.AMBIGUOUS,
                    {"poll_terminal": True, "provider_id_missing": True},
                )
            else:
                self._repository.update_polled_status(
                    message,
                    MessageStatus.QUEUED,
                    {"provider_id_missing_pending": True},
                )
        elif message.status == MessageStatus.SENDING:
            if next_attempt >= self._config.max_attempts:
                self._repository.update_polled_status(
                    message,
                    MessageStatus.AMBIGUOUS,
                    {"poll_terminal": True, "provider_id_missing": True, "provider_id_missing_sending": True},
                )
            else:
                self._repository.update_polled_status(
                    message,
                    MessageStatus.SENDING,
                    {"provider_id_missing_pending": True},
                )
        else:
            # A sent row must have a provider id; without one it can never be reconciled.
            self._repository.update_polled_status(
                message,
                MessageStatus.AMBIGUOUS,
                {"poll_terminal": True, "provider_id_missing": True, "provider_id_missing_sent": True},
            )
