"""Telnyx SMS/MMS driver."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from texto.config import RetryConfig, TelnyxConfig
from texto.errors import SendFailed, TextoError
from texto.status import map_status
from texto.types import Direction, Driver, MessageStatus, SentMessageResult

logger = logging.getLogger(__name__)

TELNYX_API_BASE = "https://api.telnyx.com/v2/"


# ── Exceptions ────────────────────────────────────────────────────────


class TelnyxApiError(TextoError):
    """Raised when a Telnyx Messaging API call returns an error response."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.context = dict(context or {})


class TelnyxAuthError(TelnyxApiError):
    """401/403 from Telnyx."""


class TelnyxNotFoundError(TelnyxApiError):
    """404 from Telnyx."""


class TelnyxRateLimitError(TelnyxApiError):
    """429 from Telnyx."""


class TelnyxValidationError(TelnyxApiError):
    """400/422 from Telnyx."""


_ERRORS_BY_STATUS: dict[int, type[TelnyxApiError]] = {
    400: TelnyxValidationError,
    401: TelnyxAuthError,
    403: TelnyxAuthError,
    404: TelnyxNotFoundError,
    422: TelnyxValidationError,
    429: TelnyxRateLimitError,
}


# ── HTTP client ───────────────────────────────────────────────────────


class TelnyxMessagingApi:
    """Thin wrapper over the Telnyx v2 ``/messages`` endpoints."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Telnyx API key is required")
        self._client = client or httpx.Client(
            base_url=TELNYX_API_BASE,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> TelnyxMessagingApi:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def send_message(
        self,
        to: str,
        from_: str,
        text: str,
        media_urls: Sequence[str] = (),
        **options: Any,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"to": to, "from": from_, "text": text}
        payload.update(options)
        if media_urls:
            payload["media_urls"] = list(media_urls)
        response = self._client.post("messages", json=payload)
        return self._handle(response, "send_message", {"to": to})

    def fetch_message(self, message_id: str) -> dict[str, Any]:
        response = self._client.get(f"messages/{message_id}")
        return self._handle(response, "fetch_message", {"id": message_id})

    def _handle(self, response: httpx.Response, action: str, context: dict[str, Any]) -> dict[str, Any]:
        if 200 <= response.status_code < 300:
            data = _json_or_empty(response)
            inner = data.get("data", data)
            return inner if isinstance(inner, dict) else {}

        body = _json_or_empty(response)
        errors = body.get("errors") or [{}]
        first = errors[0] if isinstance(errors, list) and errors and isinstance(errors[0], dict) else {}
        message = first.get("detail") or body.get("message") or "Telnyx API error"
        code = first.get("code")
        logger.warning(
            "Telnyx Messaging API error: action=%s status=%s code=%s context=%s",
            action,
            response.status_code,
            code,
            context,
        )
        error_cls = _ERRORS_BY_STATUS.get(response.status_code, TelnyxApiError)
        raise error_cls(
            str(message),
            status=response.status_code,
            code=str(code) if code is not None else None,
            context={**context, "action": action, "body": body},
        )


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# ── Driver ────────────────────────────────────────────────────────────


class TelnyxSender:
    """Sends SMS/MMS via the Telnyx Messaging API and polls message status."""

    def __init__(
        self,
        config: TelnyxConfig,
        retry: RetryConfig | None = None,
        *,
        api: TelnyxMessagingApi | None = None,
    ) -> None:
        if not config.api_key:
            raise SendFailed("Telnyx API key missing.")
        self._config = config
        self._retry = retry or RetryConfig()
        self._api = api or TelnyxMessagingApi(config.api_key, timeout=config.timeout_seconds)

    def close(self) -> None:
        self._api.close()

    def __enter__(self) -> TelnyxSender:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

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
        profile_id = self._config.messaging_profile_id
        if not from_number or not profile_id:
            raise SendFailed("Telnyx from number or messaging_profile_id not configured.")

        media = list(media_urls)
        meta = dict(metadata or {})
        options: dict[str, Any] = {"messaging_profile_id": profile_id}
        webhook_url = meta.get("webhook_url")
        if webhook_url:
            options["webhook_url"] = webhook_url

        try:
            data = self._retry.call(lambda: self._api.send_message(to, from_number, body, media, **options))
        except TelnyxApiError as exc:
            logger.error("Telnyx API send failed: status=%s code=%s error=%s", exc.status, exc.code, exc)
            raise SendFailed(f"Telnyx API send failed: {exc}", error_code=exc.code) from exc
        except Exception as exc:
            logger.error("Telnyx send failed: %s", exc)
            raise SendFailed(f"Telnyx send failed: {exc}") from exc

        raw_status = _recipient_status(data.get("to"))
        parts = data.get("parts")
        cost = data.get("cost") if isinstance(data.get("cost"), dict) else None

        extras = {
            "telnyx_raw_status": raw_status,
            "telnyx_parts": parts,
            "telnyx_cost_amount": cost.get("amount") if cost else None,
            "telnyx_cost_currency": (cost.get("currency") or "USD") if cost else None,
        }
        for key, value in extras.items():
            if value is not None:
                meta.setdefault(key, value)

        status = map_status(Driver.TELNYX, raw_status)
        result = SentMessageResult(
            driver=Driver.TELNYX.value,
            direction=Direction.SENT,
            to=to,
            from_=from_number,
            body=body,
            media_urls=tuple(media),
            metadata=meta,
            status=status,
            provider_message_id=data.get("id"),
        )
        logger.info(
            "Telnyx message sent: id=%s status=%s parts=%s to=%s",
            result.provider_message_id,
            status.value,
            parts,
            to,
        )
        return result

    def fetch_status(self, provider_message_id: str, *context: Any) -> MessageStatus | None:
        """Poll Telnyx for the latest recipient status."""
        try:
            data = self._api.fetch_message(provider_message_id)
        except TelnyxApiError as exc:
            logger.warning("Telnyx status fetch failed for %s: status=%s %s", provider_message_id, exc.status, exc)
            return None
        except Exception as exc:
            logger.warning("Telnyx status fetch failed for %s: %s", provider_message_id, exc)
            return None

        raw = _recipient_status(data.get("to"))
        if not raw:
            return None
        return map_status(Driver.TELNYX, raw)


def _recipient_status(recipients: Any) -> str | None:
    """First recipient's status from a Telnyx ``to`` field (object or list)."""
    if isinstance(recipients, dict):
        status = recipients.get("status")
        return status if isinstance(status, str) else None
    if isinstance(recipients, list) and recipients and isinstance(recipients[0], dict):
        status = recipients[0].get("status")
        return status if isinstance(status, str) else None
    return None
