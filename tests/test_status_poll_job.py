"""Tests for StatusPollJob."""

import dataclasses
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from texto import (
    DriverManager,
    FakeSender,
    MessageStatus,
    PollableFakeSender,
    PollingConfig,
    PollingParameterResolver,
    SentMessageResult,
    StatusPollJob,
    TextoConfig,
)


def _row(repository, status=MessageStatus.SENT, provider_id="P1", driver="fake", **metadata):
    return repository.store_sent(
        SentMessageResult(
            driver=driver,
            to="+14155550100",
            body="hi",
            status=status,
            provider_message_id=provider_id,
            metadata=metadata,
        )
    )


@pytest.fixture
def polling(config) -> PollingConfig:
    return config.polling


@pytest.fixture
def job(repository, drivers, polling, clock) -> StatusPollJob:
    return StatusPollJob(repository, drivers, polling, clock=clock)


class TestDisabled:
    def test_disabled_does_nothing(self, repository, drivers, polling, clock, fake_sender):
        _row(repository)
        clock.advance(120)
        job = StatusPollJob(repository, drivers, dataclasses.replace(polling, enabled=False), clock=clock)

        summary = job.run()

        assert (summary.checked, summary.polled) == (0, 0)
        assert fake_sender.fetched == []


class TestProgression:
    def test_sent_to_delivered(self, job, repository, fake_sender, clock):
        row = _row(repository, provider_id="P1")
        fake_sender.statuses["P1"] = MessageStatus.DELIVERED
        clock.advance(120)

        summary = job.run()

        assert summary.polled == 1
        assert row.status == MessageStatus.DELIVERED
        assert row.metadata["poll_terminal"] is True
        assert row.poll_attempts == 1
        assert row.last_poll_at == clock.now

    def test_queued_to_sent_is_promoted(self, job, repository, fake_sender, clock):
        row = _row(repository, MessageStatus.QUEUED, provider_id="P1")
        fake_sender.statuses["P1"] = MessageStatus.SENT
        clock.advance(120)

        job.run()

        assert row.status == MessageStatus.SENT
        assert row.metadata["poll_transient"] == "sent"
        assert row.metadata["poll_promoted"] is True

    def test_lower_report_keeps_status(self, job, repository, fake_sender, clock):
        row = _row(repository, MessageStatus.SENT, provider_id="P1")
        fake_sender.statuses["P1"] = MessageStatus.SENDING
        clock.advance(120)

        job.run()

        assert row.status == MessageStatus.SENT
        assert row.metadata["poll_transient"] == "sending"
        assert "poll_promoted" not in row.metadata
        assert row.poll_attempts == 1

    def test_failed_report_is_terminal(self, job, repository, fake_sender, clock):
        row = _row(repository, provider_id="P1")
        fake_sender.statuses["P1"] = MessageStatus.UNDELIVERED
        clock.advance(120)

        job.run()

        assert row.status == MessageStatus.UNDELIVERED

    def test_terminal_rows_are_not_candidates(self, job, repository, fake_sender, clock):
        _row(repository, MessageStatus.DELIVERED, provider_id="P1")
        clock.advance(120)

        assert job.run().checked == 0
        assert fake_sender.fetched == []


class TestProviderErrors:
    def test_fetch_error_counts_attempt(self, job, repository, fake_sender, clock):
        row = _row(repository, provider_id="P1")
        fake_sender.statuses["P1"] = ConnectionError("provider down")
        clock.advance(120)

        summary = job.run()

        assert summary.polled == 1
        assert row.status == MessageStatus.SENT
        assert row.metadata["poll_note"] == "fetch-error"
        assert row.poll_attempts == 1

    def test_no_status_returned(self, job, repository, fake_sender, clock):
        row = _row(repository, provider_id="P1")
        clock.advance(120)

        job.run()

        assert row.status == MessageStatus.SENT
        assert row.metadata["poll_note"] == "no-status-returned"
        assert row.poll_attempts == 1


class TestMissingProviderId:
    def test_queued_becomes_ambiguous_at_cap(self, job, repository, fake_sender, clock):
        row = _row(repository, MessageStatus.QUEUED, provider_id=None)
        clock.advance(120)

        job.run()
        assert row.status == MessageStatus.QUEUED
        assert row.poll_attempts == 1
        assert row.metadata["provider_id_missing_pending"] is True

        job.run()
        assert row.status == MessageStatus.AMBIGUOUS
        assert row.poll_attempts == 2
        assert row.metadata["provider_id_missing"] is True
        assert row.metadata["poll_terminal"] is True

        assert job.run().checked == 0
        assert fake_sender.fetched == []

    def test_sending_uses_max_attempts(self, job, repository, clock, polling):
        row = _row(repository, MessageStatus.SENDING, provider_id=None)
        clock.advance(120)

        for _ in range(polling.max_attempts - 1):
            job.run()
            assert row.status == MessageStatus.SENDING

        job.run()
        assert row.status == MessageStatus.AMBIGUOUS
        assert row.metadata["provider_id_missing_sending"] is True
        assert row.poll_attempts == polling.max_attempts

    def test_sent_becomes_ambiguous_immediately(self, job, repository, clock):
        row = _row(repository, MessageStatus.SENT, provider_id=None)
        clock.advance(120)

        job.run()

        assert row.status == MessageStatus.AMBIGUOUS
        assert row.metadata["provider_id_missing_sent"] is True


class TestCapsAndBackoff:
    def test_too_young_rows_are_skipped(self, job, repository, fake_sender, clock):
        _row(repository, provider_id="P1")
        clock.advance(30)

        assert job.run().checked == 0

    def test_queued_cap_stops_polling(self, job, repository, fake_sender, clock):
        row = _row(repository, MessageStatus.QUEUED, provider_id="P1")
        clock.advance(120)

        for _ in range(4):
            job.run()

        assert len(fake_sender.fetched) == 2
        assert row.poll_attempts == 2
        assert row.status == MessageStatus.QUEUED

    def test_max_cap_stops_polling(self, job, repository, fake_sender, clock, polling):
        row = _row(repository, provider_id="P1")
        clock.advance(120)

        for _ in range(polling.max_attempts + 2):
            job.run()

        assert len(fake_sender.fetched) == polling.max_attempts
        assert row.poll_attempts == polling.max_attempts

    def test_backoff_window(self, repository, drivers, polling, fake_sender, clock):
        job = StatusPollJob(repository, drivers, dataclasses.replace(polling, backoff_seconds=300), clock=clock)
        row = _row(repository, provider_id="P1")
        clock.advance(120)

        job.run()
        clock.advance(60)
        second = job.run()
        clock.advance(300)
        job.run()

        assert second.polled == 0
        assert len(fake_sender.fetched) == 2
        assert row.poll_attempts == 2

    def test_malformed_last_poll_at_means_never_polled(self, repository, drivers, polling, fake_sender, clock):
        job = StatusPollJob(repository, drivers, dataclasses.replace(polling, backoff_seconds=300), clock=clock)
        row = _row(repository, provider_id="P1", last_poll_at="not-a-date")
        clock.advance(120)

        job.run()

        assert row.poll_attempts == 1

    def test_last_poll_at_ahead_of_clock_does_not_stall(self, repository, drivers, polling, fake_sender, clock):
        job = StatusPollJob(repository, drivers, dataclasses.replace(polling, backoff_seconds=300), clock=clock)
        row = _row(repository, provider_id="P1", last_poll_at=(clock.now + timedelta(hours=1)).isoformat())
        clock.advance(120)

        job.run()

        assert row.poll_attempts == 1
        assert row.last_poll_at == clock.now


class TestCandidateSelection:
    def test_rows_without_provider_id_come_first(self, repository, drivers, polling, fake_sender, clock):
        job = StatusPollJob(repository, drivers, dataclasses.replace(polling, batch_limit=2), clock=clock)
        with_id = _row(repository, provider_id="P1")
        first_missing = _row(repository, MessageStatus.QUEUED, provider_id=None)
        second_missing = _row(repository, MessageStatus.QUEUED, provider_id=None)
        clock.advance(120)

        summary = job.run()

        assert summary.checked == 2
        assert first_missing.poll_attempts == 1
        assert second_missing.poll_attempts == 1
        assert with_id.poll_attempts == 0
        assert fake_sender.fetched == []

    def test_batch_limit_fills_with_provider_id_rows(self, repository, drivers, polling, fake_sender, clock):
        job = StatusPollJob(repository, drivers, dataclasses.replace(polling, batch_limit=2), clock=clock)
        _row(repository, MessageStatus.QUEUED, provider_id=None)
        _row(repository, provider_id="P1")
        _row(repository, provider_id="P2")
        clock.advance(120)

        job.run()

        assert [call.provider_message_id for call in fake_sender.fetched] == ["P1"]


class TestDriverResolution:
    def test_unknown_driver_is_skipped(self, job, repository, clock):
        row = _row(repository, provider_id="P1", driver="retired")
        clock.advance(120)

        summary = job.run()

        assert summary.checked == 1
        assert summary.polled == 0
        assert row.poll_attempts == 0

    def test_non_pollable_driver_is_skipped(self, repository, config, polling, clock):
        drivers = DriverManager(config)
        drivers.extend("fake", lambda cfg: FakeSender())
        row = _row(repository, provider_id="P1")
        clock.advance(120)

        StatusPollJob(repository, drivers, polling, clock=clock).run()

        assert row.poll_attempts == 0

    def test_driver_build_error_is_skipped(self, repository, polling, clock):
        drivers = DriverManager(TextoConfig())
        row = _row(repository, provider_id="SM1", driver="twilio")
        clock.advance(120)

        summary = StatusPollJob(repository, drivers, polling, clock=clock).run()

        assert summary.polled == 0
        assert row.poll_attempts == 0

    def test_resolver_supplies_context(self, repository, config, polling, clock):
        sender = PollableFakeSender("twilio", statuses={"SM1": MessageStatus.DELIVERED})
        drivers = DriverManager(config)
        drivers.extend("twilio", lambda cfg: sender)
        conversation_sid = "CH" + "0" * 32
        _row(repository, provider_id="SM1", driver="twilio", conversation_sid=conversation_sid)
        clock.advance(120)

        StatusPollJob(repository, drivers, polling, resolver=PollingParameterResolver(), clock=clock).run()

        assert sender.fetched[0].provider_message_id == "SM1"
        assert sender.fetched[0].context == (conversation_sid,)

    def test_builtin_sender_is_reused_across_rows(self, repository, config, polling, clock):
        response = httpx.Response(200, json={"data": {"to": [{"status": "delivered"}]}})
        with patch("texto.drivers.telnyx.httpx.Client") as client_cls:
            client_cls.return_value.get.return_value = response
            drivers = DriverManager(config)
            rows = [_row(repository, provider_id=f"T{n}", driver="telnyx") for n in range(5)]
            clock.advance(120)

            summary = StatusPollJob(repository, drivers, polling, clock=clock).run()
            drivers.close()

        assert summary.polled == 5
        assert all(row.status == MessageStatus.DELIVERED for row in rows)
        assert client_cls.call_count == 1
        client_cls.return_value.close.assert_called_once()
