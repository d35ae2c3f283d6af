"""Twilio SMS/MMS driver."""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Mapping, Sequence
from typing import Any

from twilio.base.exceptions import TwilioRestException  # type: ignore[import-untyped]
from twilio.http.http_client import TwilioHttpClient  # type: ignore[import-untyped]
from twilio.rest import Client  # type: ignore[import-untyped]

from texto.config import RetryConfig, TwilioConfig
from texto.errors import SendFailed
from texto.status import map_status
from texto.types import CONVERSATION_SID, Direction, Driver, MessageStatus, SentMessageResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_SMS_CHARS = 1600

# Twilio error code for "participant already exists in a conversation".
DUPLICATE_PARTICIPANT_CODE = 50416

_CONVERSATION_SID_PATTERN = re.compile(r"(CH[a-zA-Z0-9]{32})")


class TwilioSender:
    """Sends SMS/MMS via the Twilio REST API.

    Uses the classic Messages API by default. With
    ``TwilioConfig.use_conversations`` enabled, text-only messages go through
    the Conversations API and the conversation SID is recorded in the result
    metadata so status polling can address the message later.
    """

    def __init__(
        self,
        config: TwilioConfig,
        retry: RetryConfig | None = None,
        *,
        client: Client | None = None,
    ) -> None:
        if not config.account_sid or not config.auth_token:
            raise SendFailed("Twilio credentials missing.")
        self._config = config
        self._retry = retry or RetryConfig()
        if client is None:
            http_client = TwilioHttpClient(timeout=DEFAULT_TIMEOUT_SECONDS)
            client = Client(config.account_sid, config.auth_token, http_client=http_client)
        self._client = client

    def close(self) -> None:
        """Close the pooled HTTP session, if one was opened."""
        session = getattr(getattr(self._client, "http_client", None), "session", None)
        if session is not None:
            session.close()

    def __enter__(self) -> TwilioSender:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # ── Public API ────────────────────────────────────────────────

    def send(
        self,
        to: str,
        body: str,
        from_: str | None = None,
        media_urls: Sequence[str] = (),
        metadata: Mapping[str, Any] | None = None,
    ) -> SentMessageResult:
        """Send a message, retrying transport failures per the retry policy."""
        from_number = from_ or self._config.from_number
        if not from_number:
            raise SendFailed("Twilio from number not configured.")

        media = list(media_urls)
        meta = dict(metadata or {})
        if len(body) > MAX_SMS_CHARS:
            body = body[:MAX_SMS_CHARS]

        if self._config.use_conversations and not media:
            return self._send_via_conversation(to, body, from_number, meta)
        return self._send_via_messages(to, body, from_number, media, meta)

    def fetch_status(self, provider_message_id: str, *context: Any) -> MessageStatus | None:
        """Poll Twilio for the current status of a message.

        When a conversation SID is passed as the first context value the
        Conversations API is asked first, falling back to the Messages API.
        """
        conversation_sid = context[0] if context and isinstance(context[0], str) else None

        if conversation_sid:
            try:
                message = (
                    self._client.conversations.v1.conversations(conversation_sid)
                    .messages(provider_message_id)
                    .fetch()
                )
                raw = _conversation_delivery_status(getattr(message, "delivery", None))
                if raw:
                    return map_status(Driver.TWILIO, raw)
            except Exception as exc:
                logger.warning(
                    "Twilio conversation status fetch failed for %s in %s, falling back: %s",
                    provider_message_id,
                    conversation_sid,
                    exc,
                )

        try:
            message = self._client.messages(provider_message_id).fetch()
        except TwilioRestException as exc:
            logger.warning("Failed to fetch Twilio status for %s: code=%s %s", provider_message_id, exc.code, exc.msg)
            return None
        except Exception as exc:
            logger.warning("Failed to fetch Twilio status for %s: %s", provider_message_id, exc)
            return None

        raw = getattr(message, "status", None)
        if not raw:
            return None
        return map_status(Driver.TWILIO, raw)

    # ── Messages API ──────────────────────────────────────────────

    def _send_via_messages(
        self,
        to: str,
        body: str,
        from_number: str,
        media_urls: list[str],
        metadata: dict[str, Any],
    ) -> SentMessageResult:
        params: dict[str, Any] = {
            "to": to,
            "from_": from_number,
            "body": body,
        }
        if media_urls:
            params["media_url"] = media_urls
        if self._config.status_callback:
            params["status_callback"] = self._config.status_callback

        try:
            msg = self._retry.call(lambda: self._client.messages.create(**params))
        except TwilioRestException as exc:
            logger.error("Twilio API error: code=%s msg=%s", exc.code, exc.msg)
            raise SendFailed(
                f"Twilio send failed: {exc.msg}",
                error_code=str(exc.code) if exc.code else None,
            ) from exc
        except Exception as exc:
            logger.error("Twilio send failed: %s", exc)
            raise SendFailed(f"Twilio send failed: {exc}") from exc

        raw_status = getattr(msg, "status", None)
        if isinstance(raw_status, str):
            metadata.setdefault("twilio_raw_status", raw_status)
        error_code = getattr(msg, "error_code", None)

        result = SentMessageResult(
            driver=Driver.TWILIO.value,
            direction=Direction.SENT,
            to=to,
            from_=from_number,
            body=body,
            media_urls=tuple(media_urls),
            metadata=metadata,
            # The create call returning a SID means Twilio accepted the message.
            status=MessageStatus.SENT,
            provider_message_id=getattr(msg, "sid", None),
            error_code=str(error_code) if error_code else None,
        )
        logger.info("Twilio message sent: sid=%s to=%s", result.provider_message_id, to)
        return result

    # ── Conversations API ─────────────────────────────────────────

    def _send_via_conversation(
        self,
        to: str,
        body: str,
        from_number: str,
        metadata: dict[str, Any],
    ) -> SentMessageResult:
        conversations = self._client.conversations.v1.conversations
        friendly_name = f"{self._config.conversation_prefix}-{to}-{secrets.token_hex(4)}"
        try:
            conversation = conversations.create(friendly_name=friendly_name)
        except Exception as exc:
            logger.error("Failed to create Twilio conversation: %s", exc)
            raise SendFailed(f"Unable to create Twilio conversation: {exc}") from exc

        conversation_sid = getattr(conversation, "sid", None)
        if not conversation_sid:
            raise SendFailed("Twilio conversation creation returned no SID.")

        reused = False
        try:
            conversations(conversation_sid).participants.create(
                messaging_binding_address=to,
                messaging_binding_proxy_address=from_number,
            )
        except TwilioRestException as exc:
            if exc.code != DUPLICATE_PARTICIPANT_CODE:
                logger.error("Failed to add participant to %s: %s", conversation_sid, exc.msg)
                raise SendFailed(
                    f"Unable to add participant to Twilio conversation: {exc.msg}",
                    error_code=str(exc.code) if exc.code else None,
                ) from exc
            existing_sid = parse_conversation_sid(str(exc.msg))
            if existing_sid and existing_sid != conversation_sid:
                conversations(conversation_sid).delete()
                conversation_sid = existing_sid
                reused = True
                logger.info("Reusing existing Twilio conversation %s for %s", conversation_sid, to)
            else:
                logger.warning(
                    "Duplicate participant without parsable conversation SID; keeping %s",
                    conversation_sid,
                )

        self._add_participant_silently(conversation_sid, from_number)

        webhook_url = metadata.get("webhook_url") or self._config.conversation_webhook_url
        webhook_sid = self._attach_webhook(conversation_sid, webhook_url) if webhook_url else None

        try:
            sent = self._retry.call(
                lambda: conversations(conversation_sid).messages.create(author=from_number, body=body)
            )
        except Exception as exc:
            logger.error("Twilio conversation send failed in %s: %s", conversation_sid, exc)
            code = getattr(exc, "code", None)
            raise SendFailed(
                f"Twilio conversation send failed: {exc}",
                error_code=str(code) if code else None,
            ) from exc

        metadata[CONVERSATION_SID] = conversation_sid
        metadata["conversation_reused"] = reused
        if webhook_sid:
            metadata["conversation_webhook_sid"] = webhook_sid

        result = SentMessageResult(
            driver=Driver.TWILIO.value,
            direction=Direction.SENT,
            to=to,
            from_=from_number,
            body=body,
            metadata=metadata,
            status=MessageStatus.SENT,
            provider_message_id=getattr(sent, "sid", None),
        )
        logger.info(
            "Twilio conversation message sent: sid=%s conversation=%s reused=%s",
            result.provider_message_id,
            conversation_sid,
            reused,
        )
        return result

    def _add_participant_silently(self, conversation_sid: str, address: str) -> None:
        try:
            self._client.conversations.v1.conversations(conversation_sid).participants.create(
                messaging_binding_address=address,
                messaging_binding_proxy_address=address,
            )
        except TwilioRestException as exc:
            if exc.code == DUPLICATE_PARTICIPANT_CODE:
                logger.debug("Participant %s already in %s", address, conversation_sid)
            else:
                logger.warning("Failed to add participant %s to %s: %s", address, conversation_sid, exc.msg)
        except Exception as exc:
            logger.warning("Unexpected error adding participant %s to %s: %s", address, conversation_sid, exc)

    def _attach_webhook(self, conversation_sid: str, url: str) -> str | None:
        try:
            webhook = self._client.conversations.v1.conversations(conversation_sid).webhooks.create(
                target="webhook",
                configuration_url=url,
                configuration_method="POST",
                configuration_filters=["onMessageAdded", "onDeliveryUpdated"],
            )
        except Exception as exc:
            logger.warning("Failed to attach webhook to %s: %s", conversation_sid, exc)
            return None
        return getattr(webhook, "sid", None)


def parse_conversation_sid(error_message: str) -> str | None:
    """Extract a ``CH…`` conversation SID from a Twilio error message."""
    match = _CONVERSATION_SID_PATTERN.search(error_message)
    return match.group(1) if match else None


def _conversation_delivery_status(delivery: Any) -> str | None:
    """Derive a raw status string from a conversation message's delivery summary.

    Twilio reports either a status string or per-state receipt counts.
    """
    if not isinstance(delivery, Mapping):
        return None
    for key in ("status", "deliveryStatus", "delivery_status", "state"):
        value = delivery.get(key)
        if isinstance(value, str) and value:
            return value
    for state in ("failed", "undelivered", "read", "delivered", "sent"):
        count = delivery.get(state)
        if count and str(count) not in ("0", "none"):
            return state
    return None
