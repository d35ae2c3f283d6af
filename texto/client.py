"""Texto, the main entry point for sending messages and recording webhooks.

Owns the send state machine (direct or deferred), persistence of outcomes
through the repository, and notification of listeners.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .config import TextoConfig
from .errors import SendFailed
from .events import EventDispatcher, MessageFailed, MessageReceived, MessageSent, MessageStatusUpdated
from .jobs import PollSummary, StatusPollJob
from .manager import DriverManager
from .phone import normalize_e164
from .polling import PollingParameterResolver
from .queue import UNSTORED_MESSAGE_ID, InlineDispatcher, JobDispatcher, SendMessageJob
from .repository import MessageRepository
from .types import Direction, Driver, Message, MessageStatus, SentMessageResult, WebhookProcessingResult, normalize_driver

logger = logging.getLogger(__name__)


class Texto:
    """Sends SMS/MMS through the configured driver and records the outcome.

    Usage::

        from texto import DriverManager, InMemoryMessageRepository, Texto, TextoConfig

        config = TextoConfig.from_env()
        texto = Texto(config, DriverManager(config), InMemoryMessageRepository())
        result = texto.send("+15551234567", "Your code is 123456")
        if result.succeeded:
            print(f"Provider id: {result.provider_message_id}")

    Expected provider failures come back as a result with
    ``status=FAILED``; unexpected errors propagate.
    """

    def __init__(
        self,
        config: TextoConfig,
        drivers: DriverManager,
        repository: MessageRepository,
        *,
        events: EventDispatcher | None = None,
        dispatcher: JobDispatcher | None = None,
        resolver: PollingParameterResolver | None = None,
    ) -> None:
        self.config = config
        self.drivers = drivers
        self.repository = repository
        self.events = events or EventDispatcher()
        self.dispatcher = dispatcher or InlineDispatcher()
        self.resolver = resolver or PollingParameterResolver()

    # ── Sending ───────────────────────────────────────────────────

    def send(
        self,
        to: str,
        body: str,
        *,
        media_urls: Sequence[str] = (),
        metadata: Mapping[str, Any] | None = None,
        from_: str | None = None,
        driver: str | Driver | None = None,
        driver_config: Mapping[str, Any] | None = None,
        queued_job: bool = False,
        queued_message_id: Any = None,
    ) -> SentMessageResult:
        """Send a message now, or queue it when ``config.queue`` is on.

        Args:
            to: Recipient phone number.
            body: Message text.
            media_urls: Media attachments (MMS).
            metadata: Caller context stored with the message.
            from_: Sender number; defaults to the driver's ``from_number``.
            driver: Driver name; defaults to ``config.driver``.
            driver_config: Settings merged over the driver's configuration
                for this call only.
            queued_job: Set by the background job; never re-queues.
            queued_message_id: Primary key of the provisional row to complete.

        Raises:
            ValueError: ``to`` is not a usable phone number.
            UnsupportedDriver: ``driver`` cannot be resolved.
        """
        driver_name = normalize_driver(driver) if driver else self.config.driver
        config = self.config
        if driver_config:
            config = config.with_driver_override(driver_name, driver_config)

        to_number = normalize_e164(to)
        if to_number is None:
            raise ValueError(f"Invalid recipient phone number: {to!r}")
        from_number = self._resolve_from(from_, driver_name, config)
        media = tuple(media_urls)
        meta = dict(metadata or {})

        sender = self.drivers.sender(driver_name, config=config)

        if config.queue and not queued_job:
            return self._defer(config, driver_name, to_number, body, from_number, media, meta)

        try:
            result = sender.send(to_number, body, from_number, media, meta)
        except SendFailed as exc:
            logger.error(
                "Texto send failed: driver=%s to=%s from=%s error=%s",
                driver_name,
                to_number,
                from_number,
                exc,
            )
            failed = SentMessageResult.failed(
                driver=driver_name,
                to=to_number,
                body=body,
                from_=from_number,
                media_urls=media,
                metadata=meta,
                error_message=str(exc),
                error_code=exc.error_code or "send_failed",
            )
            if config.store_messages:
                if queued_job:
                    self._complete_queued(queued_message_id, failed)
                else:
                    self.repository.store_sent(failed)
            self.events.dispatch(MessageFailed(failed, str(exc)))
            return failed

        if config.store_messages:
            if queued_job:
                self._complete_queued(queued_message_id, result)
            else:
                self.repository.store_sent(result)
        self.events.dispatch(MessageSent(result))
        return result

    def _defer(
        self,
        config: TextoConfig,
        driver_name: str,
        to: str,
        body: str,
        from_number: str | None,
        media: tuple[str, ...],
        metadata: dict[str, Any],
    ) -> SentMessageResult:
        provisional = SentMessageResult(
            driver=driver_name,
            direction=Direction.SENT,
            to=to,
            from_=from_number,
            body=body,
            media_urls=media,
            metadata=metadata,
            status=MessageStatus.QUEUED,
        )
        message_id = UNSTORED_MESSAGE_ID
        if config.store_messages:
            message_id = self.repository.store_sent(provisional).id

        job = SendMessageJob(
            message_id=message_id,
            to=to,
            body=body,
            driver=driver_name,
            from_=from_number,
            media_urls=media,
            metadata=dict(metadata),
            driver_config=config.driver_snapshot(driver_name),
        )
        self.dispatcher.dispatch(job, self)
        logger.info("Texto send queued: message_id=%s driver=%s to=%s", message_id, driver_name, to)
        return provisional

    def _complete_queued(self, queued_message_id: Any, result: SentMessageResult) -> Message:
        """Upgrade the exact provisional row, or insert an audit row if that is not possible."""
        if queued_message_id:
            upgraded = self.repository.upgrade_queued(queued_message_id, result)
            if upgraded is not None:
                return upgraded
            logger.debug(
                "Queued message upgrade failed, creating new record: queued_message_id=%s provider_id=%s",
                queued_message_id,
                result.provider_message_id,
            )
        else:
            logger.debug(
                "Queued message upgrade unavailable, creating new record: provider_id=%s",
                result.provider_message_id,
            )
        return self.repository.store_sent(result)

    def _resolve_from(self, from_: str | None, driver_name: str, config: TextoConfig) -> str | None:
        if from_:
            normalized = normalize_e164(from_)
            if normalized is None:
                raise ValueError(f"Invalid sender phone number: {from_!r}")
            return normalized

        default = config.from_number_for(driver_name)
        if not default:
            return None
        normalized = normalize_e164(default)
        if normalized is None:
            logger.warning("Texto default from number invalid: from=%s driver=%s", default, driver_name)
        return normalized

    # ── Webhooks ──────────────────────────────────────────────────

    def process_webhook(self, result: WebhookProcessingResult) -> Message | None:
        """Record a normalized webhook outcome.

        Inbound messages create a row; status updates are applied to the row
        with the matching provider message id. Returns None when a status
        update matches no row.
        """
        if result.is_inbound:
            message = self.repository.store_inbound(result)
            self.events.dispatch(MessageReceived(result, message))
            return message

        message = self.repository.store_status(result)
        if message is None:
            logger.info(
                "Status webhook for unknown message: driver=%s provider_id=%s status=%s",
                result.driver,
                result.provider_message_id,
                result.status.value,
            )
            return None
        self.events.dispatch(MessageStatusUpdated(result, message))
        return message

    # ── Polling ───────────────────────────────────────────────────

    def poll_statuses(self) -> PollSummary:
        """Run one status polling pass with this instance's collaborators."""
        job = StatusPollJob(self.repository, self.drivers, self.config.polling, resolver=self.resolver)
        return job.run()

    def close(self) -> None:
        """Release the provider connections held by the driver manager."""
        self.drivers.close()
