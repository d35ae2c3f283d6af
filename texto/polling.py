"""Per-driver argument lists for ``fetch_status``.

Keeps driver polling signatures out of the poll job: adding a provider that
needs extra correlation values only means registering a builder here.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from .types import CONVERSATION_SID, Driver, Message, normalize_driver

ArgsBuilder = Callable[[str, Mapping[str, Any]], list[Any]]


def _twilio_args(provider_id: str, metadata: Mapping[str, Any]) -> list[Any]:
    conversation_sid = metadata.get(CONVERSATION_SID)
    if conversation_sid:
        return [provider_id, conversation_sid]
    return [provider_id]


class PollingParameterResolver:
    """Builds the ordered ``fetch_status`` arguments for a stored message."""

    def __init__(self, builders: Mapping[str, ArgsBuilder] | None = None) -> None:
        self._builders: dict[str, ArgsBuilder] = {Driver.TWILIO.value: _twilio_args}
        for name, builder in (builders or {}).items():
            self.register(name, builder)

    def register(self, driver: str | Driver, builder: ArgsBuilder) -> None:
        self._builders[normalize_driver(driver)] = builder

    def args_for(self, driver: str | Driver, message: Message) -> list[Any]:
        """Arguments for ``fetch_status``; the provider message id always comes first.

        Returns an empty list when the message has no provider id. Callers
        are expected to check for that before asking.
        """
        provider_id = message.provider_message_id
        if not provider_id:
            return []
        builder = self._builders.get(normalize_driver(driver))
        if builder is None:
            return [provider_id]
        return builder(provider_id, message.metadata or {})
