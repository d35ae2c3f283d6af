"""Configuration values for texto.

All configuration is explicit: a :class:`TextoConfig` is built once (directly
or via :meth:`TextoConfig.from_env`) and passed to each component. Per-call
driver overrides produce a derived value instead of mutating shared state.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .retry import exponential
from .types import Driver, normalize_driver

T = TypeVar("T")

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class TwilioConfig:
    """Credentials and options for the Twilio driver."""

    account_sid: str | None = None
    auth_token: str | None = None
    from_number: str | None = None
    status_callback: str | None = None
    # Send through the Conversations API instead of the Messages API.
    use_conversations: bool = False
    conversation_prefix: str = "Texto"
    conversation_webhook_url: str | None = None


@dataclass(frozen=True, slots=True)
class TelnyxConfig:
    """Credentials and options for the Telnyx driver."""

    api_key: str | None = None
    messaging_profile_id: str | None = None
    from_number: str | None = None
    timeout_seconds: float = 15.0


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Retry policy applied by drivers around provider calls."""

    max_attempts: int = 3
    backoff_start_ms: int = 200

    def call(self, operation: Callable[[], T]) -> T:
        return exponential(operation, self.max_attempts, self.backoff_start_ms)


@dataclass(frozen=True, slots=True)
class PollingConfig:
    """Settings for :class:`texto.jobs.StatusPollJob`."""

    enabled: bool = False
    min_age_seconds: int = 60
    queued_max_attempts: int = 2
    max_attempts: int = 5
    backoff_seconds: int = 300
    batch_limit: int = 100


@dataclass(frozen=True, slots=True)
class TextoConfig:
    """Top-level configuration.

    ``extra_drivers`` holds plain settings for drivers registered at
    runtime through :meth:`texto.manager.DriverManager.extend`.
    """

    driver: str = Driver.TWILIO.value
    queue: bool = False
    store_messages: bool = True
    retry: RetryConfig = field(default_factory=RetryConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    telnyx: TelnyxConfig = field(default_factory=TelnyxConfig)
    extra_drivers: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "driver", normalize_driver(self.driver))

    def driver_settings(self, driver: str | Driver) -> TwilioConfig | TelnyxConfig | Mapping[str, Any]:
        """Settings for one driver: a config dataclass for built-ins, else a mapping."""
        name = normalize_driver(driver)
        if name == Driver.TWILIO.value:
            return self.twilio
        if name == Driver.TELNYX.value:
            return self.telnyx
        return self.extra_drivers.get(name, {})

    def from_number_for(self, driver: str | Driver) -> str | None:
        settings = self.driver_settings(driver)
        if isinstance(settings, Mapping):
            value = settings.get("from_number")
            return str(value) if value else None
        return settings.from_number

    def driver_snapshot(self, driver: str | Driver) -> dict[str, Any]:
        """Plain copy of a driver's current settings, safe to hand to a background job."""
        settings = self.driver_settings(driver)
        if isinstance(settings, Mapping):
            return dict(settings)
        return dataclasses.asdict(settings)

    def with_driver_override(self, driver: str | Driver, override: Mapping[str, Any]) -> TextoConfig:
        """Return a copy of this config with ``override`` merged over one driver's settings.

        The merge is a shallow key overwrite. Unknown keys for built-in
        drivers raise ``ValueError``.
        """
        name = normalize_driver(driver)
        if not override:
            return self
        if name == Driver.TWILIO.value:
            return dataclasses.replace(self, twilio=_replace_known(self.twilio, override, name))
        if name == Driver.TELNYX.value:
            return dataclasses.replace(self, telnyx=_replace_known(self.telnyx, override, name))
        extra = dict(self.extra_drivers)
        extra[name] = {**extra.get(name, {}), **override}
        return dataclasses.replace(self, extra_drivers=extra)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TextoConfig:
        """Build a config from ``TEXTO_*``, ``TWILIO_*`` and ``TELNYX_*`` variables."""
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(name)
            return value if value not in (None, "") else None

        def get_bool(name: str, default: bool) -> bool:
            value = get(name)
            return default if value is None else value.strip().lower() in _TRUE_VALUES

        def get_int(name: str, default: int) -> int:
            value = get(name)
            return default if value is None else int(value)

        return cls(
            driver=get("TEXTO_DRIVER") or Driver.TWILIO.value,
            queue=get_bool("TEXTO_QUEUE", False),
            store_messages=get_bool("TEXTO_STORE_MESSAGES", True),
            retry=RetryConfig(
                max_attempts=get_int("TEXTO_RETRY_ATTEMPTS", 3),
                backoff_start_ms=get_int("TEXTO_RETRY_BACKOFF_START", 200),
            ),
            polling=PollingConfig(
                enabled=get_bool("TEXTO_STATUS_POLL_ENABLED", False),
                min_age_seconds=get_int("TEXTO_STATUS_POLL_MIN_AGE", 60),
                queued_max_attempts=get_int("TEXTO_STATUS_POLL_QUEUED_MAX_ATTEMPTS", 2),
                max_attempts=get_int("TEXTO_STATUS_POLL_MAX_ATTEMPTS", 5),
                backoff_seconds=get_int("TEXTO_STATUS_POLL_BACKOFF", 300),
                batch_limit=get_int("TEXTO_STATUS_POLL_BATCH", 100),
            ),
            twilio=TwilioConfig(
                account_sid=get("TWILIO_ACCOUNT_SID"),
                auth_token=get("TWILIO_AUTH_TOKEN"),
                from_number=get("TWILIO_FROM_NUMBER"),
                status_callback=get("TWILIO_STATUS_CALLBACK"),
                use_conversations=get_bool("TWILIO_USE_CONVERSATIONS", False),
                conversation_prefix=get("TWILIO_CONVERSATION_PREFIX") or "Texto",
                conversation_webhook_url=get("TWILIO_CONVERSATION_WEBHOOK_URL"),
            ),
            telnyx=TelnyxConfig(
                api_key=get("TELNYX_API_KEY"),
                messaging_profile_id=get("TELNYX_MESSAGING_PROFILE_ID"),
                from_number=get("TELNYX_FROM_NUMBER"),
            ),
        )


def _replace_known(settings: Any, override: Mapping[str, Any], driver: str) -> Any:
    known = {f.name for f in dataclasses.fields(settings)}
    unknown = sorted(set(override) - known)
    if unknown:
        raise ValueError(f"Unknown {driver} config option(s): {', '.join(unknown)}")
    return dataclasses.replace(settings, **override)
