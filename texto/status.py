"""Status mapping and forward-only progression.

Every driver and webhook handler funnels provider vocabulary through
:func:`map_status`, so raw status strings are interpreted in one place.
:func:`resolve_progression` decides what to persist when a new report
arrives for a row that already has a status.
"""

from __future__ import annotations

import logging
from typing import NamedTuple

from .types import Driver, MessageStatus, normalize_driver

logger = logging.getLogger(__name__)

_TWILIO_STATUSES: dict[str, MessageStatus] = {
    "queued": MessageStatus.QUEUED,
    "accepted": MessageStatus.SENDING,
    "sending": MessageStatus.SENDING,
    "receiving": MessageStatus.SENDING,
    "scheduled": MessageStatus.QUEUED,
    "sent": MessageStatus.SENT,
    "submitted": MessageStatus.SENT,
    "delivery_unknown": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.DELIVERED,
    "failed": MessageStatus.FAILED,
    "delivery_failed": MessageStatus.FAILED,
    "canceled": MessageStatus.FAILED,
    "undelivered": MessageStatus.UNDELIVERED,
    "received": MessageStatus.RECEIVED,
}

_TELNYX_EVENTS: dict[str, MessageStatus] = {
    "message.queued": MessageStatus.QUEUED,
    "message.delivery_status.queued": MessageStatus.QUEUED,
    "message.sending": MessageStatus.SENDING,
    "message.delivery_status.sending": MessageStatus.SENDING,
    "message.sent": MessageStatus.SENT,
    "message.delivery_status.sent": MessageStatus.SENT,
    "message.delivered": MessageStatus.DELIVERED,
    "message.delivery_status.delivered": MessageStatus.DELIVERED,
    "message.delivery_status.read": MessageStatus.DELIVERED,
    "message.failed": MessageStatus.FAILED,
    "message.canceled": MessageStatus.FAILED,
    "message.delivery_status.failed": MessageStatus.FAILED,
    "message.delivery_status.undelivered": MessageStatus.FAILED,
    "message.received": MessageStatus.RECEIVED,
}

_TELNYX_STATUSES: dict[str, MessageStatus] = {
    "queued": MessageStatus.QUEUED,
    "sending": MessageStatus.SENDING,
    "accepted": MessageStatus.SENDING,
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.DELIVERED,
    "failed": MessageStatus.FAILED,
    "delivery_failed": MessageStatus.FAILED,
    "undelivered": MessageStatus.UNDELIVERED,
}


def map_status(
    driver: str | Driver,
    raw_status: str | None = None,
    event_type: str | None = None,
) -> MessageStatus:
    """Map a provider status string or webhook event type to a canonical status.

    ``event_type`` wins when present. Unrecognized values fall back to
    ``SENT`` (in flight, unresolved). Telnyx with no information at all maps
    to ``QUEUED`` because its initial API response precedes acceptance.
    Never raises.
    """
    name = normalize_driver(driver)
    if name == Driver.TELNYX.value:
        return _map_telnyx(raw_status, event_type)
    return _map_twilio(event_type or raw_status)


def _map_twilio(status: str | None) -> MessageStatus:
    if not status:
        return MessageStatus.SENT
    mapped = _TWILIO_STATUSES.get(status.strip().lower())
    if mapped is None:
        logger.warning("Unknown Twilio message status received: %s", status)
        return MessageStatus.SENT
    return mapped


def _map_telnyx(raw_status: str | None, event_type: str | None) -> MessageStatus:
    if event_type:
        mapped = _TELNYX_EVENTS.get(event_type.strip().lower())
        if mapped is None:
            logger.warning("Unknown Telnyx event type received: %s", event_type)
            return MessageStatus.SENT
        return mapped
    if raw_status:
        mapped = _TELNYX_STATUSES.get(raw_status.strip().lower())
        if mapped is None:
            logger.warning("Unknown Telnyx message status received: %s", raw_status)
            return MessageStatus.SENT
        return mapped
    return MessageStatus.QUEUED


class Progression(NamedTuple):
    """Decision produced by :func:`resolve_progression`."""

    status: MessageStatus
    terminal: bool
    promoted: bool


def resolve_progression(current: MessageStatus, reported: MessageStatus) -> Progression:
    """Decide which status to store when ``reported`` arrives for a row at ``current``.

    Terminal reports are always stored. A terminal row is never moved by a
    non-terminal report. Otherwise the report is stored only if its rank is
    strictly higher than the current rank.
    """
    if reported.is_terminal:
        return Progression(reported, terminal=True, promoted=False)
    if reported.rank > current.rank and not current.is_terminal:
        return Progression(reported, terminal=False, promoted=True)
    return Progression(current, terminal=False, promoted=False)
