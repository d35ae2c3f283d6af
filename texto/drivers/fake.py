"""Fake drivers for testing.

Record every send and return configurable results, so code depending on
texto can be tested without hitting real providers.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from texto.errors import SendFailed
from texto.types import Direction, MessageStatus, SentMessageResult

DEFAULT_FROM_NUMBER = "+10000000000"


@dataclass
class SentCall:
    """Record of one ``send`` call made to a fake driver."""

    to: str
    body: str
    from_: str | None
    media_urls: list[str]
    metadata: dict[str, Any]
    result: SentMessageResult | None = None
    error: SendFailed | None = None


class FakeSender:
    """Driver double that records sends. Does not support polling.

    Usage::

        sender = FakeSender()
        manager.extend("fake", lambda config: sender)
        texto.send("+15551234567", "hi", driver="fake")
        assert sender.sent[0].body == "hi"

    Configure failures::

        sender = FakeSender(fail_with=SendFailed("carrier rejected"))
    """

    def __init__(
        self,
        driver: str = "fake",
        *,
        status: MessageStatus = MessageStatus.SENT,
        fail_with: SendFailed | None = None,
    ) -> None:
        self.driver = driver
        self.status = status
        self.fail_with = fail_with
        self.sent: list[SentCall] = []

    def send(
        self,
        to: str,
        body: str,
        from_: str | None = None,
        media_urls: Sequence[str] = (),
        metadata: Mapping[str, Any] | None = None,
    ) -> SentMessageResult:
        call = SentCall(
            to=to,
            body=body,
            from_=from_,
            media_urls=list(media_urls),
            metadata=dict(metadata or {}),
        )
        self.sent.append(call)
        if self.fail_with is not None:
            call.error = self.fail_with
            raise self.fail_with

        call.result = SentMessageResult(
            driver=self.driver,
            direction=Direction.SENT,
            to=to,
            from_=from_ or DEFAULT_FROM_NUMBER,
            body=body,
            media_urls=tuple(media_urls),
            metadata=call.metadata,
            status=self.status,
            provider_message_id=f"fake-{uuid.uuid4().hex[:12]}",
        )
        return call.result

    def reset(self) -> None:
        """Clear all recorded sends."""
        self.sent.clear()


@dataclass
class FetchCall:
    provider_message_id: str
    context: tuple[Any, ...] = field(default_factory=tuple)


class PollableFakeSender(FakeSender):
    """FakeSender that also answers status polls.

    ``statuses`` maps provider message ids to the status to report. An
    exception instance as a value is raised instead, to simulate outages.
    """

    def __init__(
        self,
        driver: str = "fake",
        *,
        statuses: Mapping[str, MessageStatus | Exception | None] | None = None,
        status: MessageStatus = MessageStatus.SENT,
        fail_with: SendFailed | None = None,
    ) -> None:
        super().__init__(driver, status=status, fail_with=fail_with)
        self.statuses: dict[str, MessageStatus | Exception | None] = dict(statuses or {})
        self.fetched: list[FetchCall] = []

    def fetch_status(self, provider_message_id: str, *context: Any) -> MessageStatus | None:
        self.fetched.append(FetchCall(provider_message_id, tuple(context)))
        reported = self.statuses.get(provider_message_id)
        if isinstance(reported, Exception):
            raise reported
        return reported
