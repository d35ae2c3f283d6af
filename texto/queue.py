"""Deferred send execution.

In queue mode :class:`texto.client.Texto` persists a provisional ``queued``
row and hands a :class:`SendMessageJob` to a :class:`JobDispatcher`. The
job carries everything needed to redo the send later, including a snapshot
of the driver configuration taken at enqueue time.

Backends:
- :class:`InlineDispatcher`: runs the job in the caller's thread (dev/tests)
- :class:`ThreadPoolDispatcher`: runs jobs on a background worker pool
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .client import Texto
    from .types import SentMessageResult

logger = logging.getLogger(__name__)

# Primary key passed when the provisional row was not persisted.
UNSTORED_MESSAGE_ID = 0


@dataclass(frozen=True, slots=True)
class SendMessageJob:
    """Unit of deferred work for one queued send."""

    message_id: Any
    to: str
    body: str
    driver: str
    from_: str | None = None
    media_urls: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    driver_config: dict[str, Any] = field(default_factory=dict)

    def handle(self, texto: Texto) -> SentMessageResult:
        """Perform the send and complete the provisional row it was queued for."""
        logger.info(
            "Handling queued send message_id=%s to=%s driver=%s has_media=%s",
            self.message_id,
            self.to,
            self.driver,
            bool(self.media_urls),
        )
        result = texto.send(
            self.to,
            self.body,
            media_urls=self.media_urls,
            metadata=self.metadata,
            from_=self.from_,
            driver=self.driver,
            driver_config=self.driver_config,
            queued_job=True,
            queued_message_id=self.message_id,
        )
        logger.info(
            "Queued send completed message_id=%s provider_id=%s status=%s",
            self.message_id,
            result.provider_message_id,
            result.status.value,
        )
        return result


class JobDispatcher(Protocol):
    """Hands a job to whatever executes deferred work."""

    def dispatch(self, job: SendMessageJob, texto: Texto) -> None:
        ...


class InlineDispatcher:
    """Runs jobs immediately in the calling thread.

    With ``run_immediately=False`` jobs are only recorded in :attr:`pending`
    and run later via :meth:`run_pending`, which lets tests observe the
    provisional state in between.
    """

    def __init__(self, *, run_immediately: bool = True) -> None:
        self.run_immediately = run_immediately
        self.pending: list[tuple[SendMessageJob, Texto]] = []

    def dispatch(self, job: SendMessageJob, texto: Texto) -> None:
        if self.run_immediately:
            job.handle(texto)
        else:
            self.pending.append((job, texto))

    def run_pending(self) -> list[SentMessageResult]:
        """Run and clear all recorded jobs in dispatch order."""
        jobs, self.pending = self.pending, []
        return [job.handle(texto) for job, texto in jobs]


class ThreadPoolDispatcher:
    """Runs jobs on a background thread pool."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="texto-send")

    def dispatch(self, job: SendMessageJob, texto: Texto) -> None:
        future = self._executor.submit(job.handle, texto)
        future.add_done_callback(_log_failure(job))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_failure(job: SendMessageJob):
    def callback(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error(
                "Queued send failed message_id=%s to=%s",
                job.message_id,
                job.to,
                exc_info=exc,
            )

    return callback
