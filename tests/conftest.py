"""Shared test fixtures for texto."""

from datetime import datetime, timedelta, timezone

import pytest

from texto import (
    DriverManager,
    InMemoryMessageRepository,
    InlineDispatcher,
    PollableFakeSender,
    PollingConfig,
    RetryConfig,
    TelnyxConfig,
    Texto,
    TextoConfig,
    TwilioConfig,
)


class FrozenClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def twilio_config() -> TwilioConfig:
    return TwilioConfig(
        account_sid="ACtest123",
        auth_token="test_token_456",
        from_number="+14155238886",
        status_callback="https://example.com/webhook/sms-status",
    )


@pytest.fixture
def telnyx_config() -> TelnyxConfig:
    return TelnyxConfig(
        api_key="KEYtest123",
        messaging_profile_id="profile-1",
        from_number="+14155550100",
    )


@pytest.fixture
def config(twilio_config: TwilioConfig, telnyx_config: TelnyxConfig) -> TextoConfig:
    return TextoConfig(
        driver="fake",
        retry=RetryConfig(max_attempts=1, backoff_start_ms=0),
        polling=PollingConfig(enabled=True, min_age_seconds=60, backoff_seconds=0),
        twilio=twilio_config,
        telnyx=telnyx_config,
        extra_drivers={"fake": {"from_number": "+15550001111"}},
    )


@pytest.fixture
def repository(clock: FrozenClock) -> InMemoryMessageRepository:
    return InMemoryMessageRepository(clock=clock)


@pytest.fixture
def fake_sender() -> PollableFakeSender:
    return PollableFakeSender()


@pytest.fixture
def drivers(config: TextoConfig, fake_sender: PollableFakeSender) -> DriverManager:
    manager = DriverManager(config)
    manager.extend("fake", lambda cfg: fake_sender)
    return manager


@pytest.fixture
def dispatcher() -> InlineDispatcher:
    return InlineDispatcher(run_immediately=False)


@pytest.fixture
def texto(
    config: TextoConfig,
    drivers: DriverManager,
    repository: InMemoryMessageRepository,
    dispatcher: InlineDispatcher,
) -> Texto:
    return Texto(config, drivers, repository, dispatcher=dispatcher)
