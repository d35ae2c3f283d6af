"""Base protocols for texto drivers."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from texto.types import MessageStatus, SentMessageResult


@runtime_checkable
class Sender(Protocol):
    """Interface that all drivers must implement."""

    def send(
        self,
        to: str,
        body: str,
        from_: str | None = None,
        media_urls: Sequence[str] = (),
        metadata: Mapping[str, Any] | None = None,
    ) -> SentMessageResult:
        """Send an SMS/MMS and return the result.

        Raises:
            SendFailed: the provider rejected the message or the transport
                failed after the driver's retries were exhausted.
        """
        ...


@runtime_checkable
class PollableSender(Protocol):
    """Optional capability: drivers that can poll the provider for status."""

    def fetch_status(self, provider_message_id: str, *context: Any) -> MessageStatus | None:
        """Fetch the latest status for a previously sent message.

        ``context`` carries driver-specific correlation values (see
        :class:`texto.polling.PollingParameterResolver`). Returns None when
        the provider has no usable answer.
        """
        ...


def supports_polling(sender: object) -> bool:
    """Whether ``sender`` implements :class:`PollableSender`."""
    return isinstance(sender, PollableSender)
