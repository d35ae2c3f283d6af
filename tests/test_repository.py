"""Tests for the in-memory message repository."""

from datetime import timedelta

from texto import (
    Direction,
    InMemoryMessageRepository,
    MessageStatus,
    SentMessageResult,
    WebhookProcessingResult,
)
from texto.types import TRANSIENT_STATUSES


def _result(status=MessageStatus.SENT, provider_id="SM1", **metadata):
    return SentMessageResult(
        driver="twilio",
        to="+15551234567",
        from_="+14155238886",
        body="hi",
        status=status,
        provider_message_id=provider_id,
        metadata=metadata,
    )


class TestStoreSent:
    def test_assigns_ids_and_poll_defaults(self, repository: InMemoryMessageRepository, clock):
        first = repository.store_sent(_result())
        second = repository.store_sent(_result(provider_id="SM2"))

        assert (first.id, second.id) == (1, 2)
        assert first.direction == Direction.SENT
        assert first.metadata["poll_attempts"] == 0
        assert first.metadata["last_poll_at"] is None
        assert first.created_at == clock.now
        assert first.sent_at == clock.now

    def test_identical_sends_get_distinct_rows(self, repository: InMemoryMessageRepository):
        rows = [repository.store_sent(_result(provider_id=None)) for _ in range(3)]
        assert len({row.id for row in rows}) == 3
        assert len(repository.all()) == 3

    def test_telnyx_segments_and_cost(self, repository: InMemoryMessageRepository):
        message = repository.store_sent(_result(telnyx_parts=2, telnyx_cost_amount="0.0080"))
        assert message.segments_count == 2
        assert message.cost_estimate == "0.0080"


class TestStoreInbound:
    def test_creates_received_row(self, repository: InMemoryMessageRepository, clock):
        message = repository.store_inbound(
            WebhookProcessingResult.inbound(
                "twilio",
                from_="+15551234567",
                to="+14155238886",
                body="Hello back",
                media_urls=["https://example.com/pic.jpg"],
                provider_message_id="SMin",
            )
        )
        assert message.direction == Direction.RECEIVED
        assert message.status == MessageStatus.RECEIVED
        assert message.received_at == clock.now
        assert message.media_urls == ["https://example.com/pic.jpg"]


class TestStoreStatus:
    def test_updates_matching_row(self, repository: InMemoryMessageRepository):
        stored = repository.store_sent(_result())
        updated = repository.store_status(
            WebhookProcessingResult.status_update("twilio", "SM1", MessageStatus.DELIVERED, {"raw": "delivered"})
        )
        assert updated is stored
        assert stored.status == MessageStatus.DELIVERED
        assert stored.metadata["raw"] == "delivered"
        assert stored.status_updated_at is not None

    def test_unknown_provider_id(self, repository: InMemoryMessageRepository):
        result = WebhookProcessingResult.status_update("twilio", "SMnope", MessageStatus.DELIVERED)
        assert repository.store_status(result) is None

    def test_missing_provider_id(self, repository: InMemoryMessageRepository):
        result = WebhookProcessingResult.status_update("twilio", None, MessageStatus.DELIVERED)
        assert repository.store_status(result) is None

    def test_late_transient_does_not_overwrite_terminal(self, repository: InMemoryMessageRepository):
        stored = repository.store_sent(_result())
        repository.store_status(WebhookProcessingResult.status_update("twilio", "SM1", MessageStatus.DELIVERED))
        repository.store_status(WebhookProcessingResult.status_update("twilio", "SM1", MessageStatus.SENT))
        assert stored.status == MessageStatus.DELIVERED

    def test_webhook_metadata_cannot_reset_poll_bookkeeping(self, repository: InMemoryMessageRepository, clock):
        stored = repository.store_sent(_result())
        repository.update_polled_status(stored, MessageStatus.SENT)
        repository.update_polled_status(stored, MessageStatus.SENT)
        last_poll_at = stored.last_poll_at

        repository.store_status(
            WebhookProcessingResult.status_update(
                "twilio",
                "SM1",
                MessageStatus.SENT,
                {"poll_attempts": 0, "last_poll_at": None, "carrier": "att"},
            )
        )

        assert stored.poll_attempts == 2
        assert stored.last_poll_at == last_poll_at
        assert stored.metadata["carrier"] == "att"


class TestUpdatePolledStatus:
    def test_increments_attempts_and_stamps_time(self, repository: InMemoryMessageRepository, clock):
        stored = repository.store_sent(_result())

        repository.update_polled_status(stored, MessageStatus.SENT, {"poll_transient": "sent"})
        clock.advance(30)
        repository.update_polled_status(stored, MessageStatus.DELIVERED, {"poll_terminal": True})

        assert stored.poll_attempts == 2
        assert stored.last_poll_at == clock.now
        assert stored.status == MessageStatus.DELIVERED
        assert stored.metadata["poll_transient"] == "sent"
        assert stored.metadata["poll_terminal"] is True


class TestUpgradeQueued:
    def test_result_metadata_cannot_reset_poll_bookkeeping(self, repository: InMemoryMessageRepository):
        provisional = repository.store_sent(_result(MessageStatus.QUEUED, provider_id=None))
        repository.update_polled_status(provisional, MessageStatus.QUEUED)

        repository.upgrade_queued(provisional.id, _result(provider_id="SM9", poll_attempts=0))

        assert provisional.poll_attempts == 1
        assert provisional.last_poll_at is not None

    def test_upgrade_clears_ambiguity_flags(self, repository: InMemoryMessageRepository):
        provisional = repository.store_sent(_result(MessageStatus.QUEUED, provider_id=None))
        repository.update_polled_status(
            provisional,
            MessageStatus.AMBIGUOUS,
            {"poll_terminal": True, "provider_id_missing": True},
        )

        repository.upgrade_queued(provisional.id, _result(provider_id="SM9"))

        assert provisional.status == MessageStatus.SENT
        assert "poll_terminal" not in provisional.metadata
        assert "provider_id_missing" not in provisional.metadata
        assert provisional.metadata["upgraded_from"] == "ambiguous"

    def test_upgrade_from_queued_is_not_marked(self, repository: InMemoryMessageRepository):
        provisional = repository.store_sent(_result(MessageStatus.QUEUED, provider_id=None))
        repository.upgrade_queued(provisional.id, _result(provider_id="SM9"))
        assert "upgraded_from" not in provisional.metadata

    def test_upgrades_provisional_row(self, repository: InMemoryMessageRepository):
        provisional = repository.store_sent(_result(MessageStatus.QUEUED, provider_id=None, order=7))

        upgraded = repository.upgrade_queued(provisional.id, _result(provider_id="SM9", twilio_raw_status="queued"))

        assert upgraded is provisional
        assert provisional.status == MessageStatus.SENT
        assert provisional.provider_message_id == "SM9"
        assert provisional.metadata["order"] == 7
        assert provisional.metadata["twilio_raw_status"] == "queued"
        assert provisional.metadata["poll_attempts"] == 0

    def test_upgrades_ambiguous_row(self, repository: InMemoryMessageRepository):
        provisional = repository.store_sent(_result(MessageStatus.AMBIGUOUS, provider_id=None))
        assert repository.upgrade_queued(provisional.id, _result()) is provisional

    def test_second_upgrade_is_refused(self, repository: InMemoryMessageRepository):
        provisional = repository.store_sent(_result(MessageStatus.QUEUED, provider_id=None))
        repository.upgrade_queued(provisional.id, _result(provider_id="SM1"))

        assert repository.upgrade_queued(provisional.id, _result(provider_id="SM2")) is None
        assert provisional.provider_message_id == "SM1"

    def test_missing_row(self, repository: InMemoryMessageRepository):
        assert repository.upgrade_queued(99, _result()) is None

    def test_only_the_addressed_row_changes(self, repository: InMemoryMessageRepository):
        rows = [repository.store_sent(_result(MessageStatus.QUEUED, provider_id=None)) for _ in range(3)]

        repository.upgrade_queued(rows[1].id, _result(provider_id="SM2"))

        assert [row.status for row in rows] == [MessageStatus.QUEUED, MessageStatus.SENT, MessageStatus.QUEUED]


class TestFindPollCandidates:
    def test_filters_and_orders(self, repository: InMemoryMessageRepository, clock):
        old_sent = repository.store_sent(_result(provider_id="SM1"))
        old_missing = repository.store_sent(_result(MessageStatus.QUEUED, provider_id=None))
        repository.store_sent(_result(MessageStatus.DELIVERED, provider_id="SM3"))
        clock.advance(120)
        repository.store_sent(_result(provider_id="SM4"))

        cutoff = clock.now - timedelta(seconds=60)
        with_id = repository.find_poll_candidates(TRANSIENT_STATUSES, cutoff, with_provider_id=True, limit=10)
        without_id = repository.find_poll_candidates(TRANSIENT_STATUSES, cutoff, with_provider_id=False, limit=10)

        assert with_id == [old_sent]
        assert without_id == [old_missing]

    def test_limit(self, repository: InMemoryMessageRepository, clock):
        for n in range(5):
            repository.store_sent(_result(provider_id=f"SM{n}"))
        rows = repository.find_poll_candidates(TRANSIENT_STATUSES, clock.now, with_provider_id=True, limit=2)
        assert [row.id for row in rows] == [1, 2]
        assert repository.find_poll_candidates(TRANSIENT_STATUSES, clock.now, with_provider_id=True, limit=0) == []
