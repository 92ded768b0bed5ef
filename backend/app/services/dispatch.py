"""Paced delivery of search results.

Messaging channels rate-limit bursts, so multi-result answers are pushed
through a queue drained by a single consumer that keeps at least
``interval`` seconds between two sends.  Pacing starts only after the
search transaction has returned; it never holds a database connection.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Optional

from app.core.errors import DeliveryFailure
from app.services.messages import outcome_messages
from app.services.messaging import MessageSender
from app.services.search import SearchOutcome

logger = logging.getLogger(__name__)

DISPATCH_INTERVAL_SECONDS = float(os.getenv("DISPATCH_INTERVAL_SECONDS", "2.0"))
_timeout_env = os.getenv("DISPATCH_TIMEOUT_SECONDS")
DISPATCH_TIMEOUT_SECONDS: Optional[float] = float(_timeout_env) if _timeout_env else None


@dataclass
class DispatchReport:
    sent: int = 0
    failed: int = 0
    dropped: int = 0
    timed_out: bool = False


class PacedDispatcher:
    def __init__(
        self,
        sender: MessageSender,
        interval: float = DISPATCH_INTERVAL_SECONDS,
        timeout: Optional[float] = DISPATCH_TIMEOUT_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self._sender = sender
        self._interval = interval
        self._timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._queue: asyncio.Queue[tuple[int, str]] = asyncio.Queue()
        self._last_sent: Optional[float] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, chat_id: int, text: str) -> None:
        self._queue.put_nowait((chat_id, text))

    async def _wait_for_slot(self) -> None:
        if self._last_sent is None:
            return
        remaining = self._interval - (self._clock() - self._last_sent)
        if remaining > 0:
            await self._sleep(remaining)

    async def _drain(self, report: DispatchReport) -> None:
        while not self._queue.empty():
            chat_id, text = self._queue.get_nowait()
            try:
                await self._wait_for_slot()
                try:
                    await self._sender.send_text(chat_id, text)
                    report.sent += 1
                except DeliveryFailure:
                    logger.exception("Message to chat %s not delivered", chat_id)
                    report.failed += 1
                self._last_sent = self._clock()
            except BaseException:
                report.dropped += 1
                raise
            finally:
                self._queue.task_done()

    def _drop_pending(self) -> int:
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        return dropped

    async def flush(self) -> DispatchReport:
        """
        Deliver everything queued so far, respecting the spacing interval.

        The queue is empty afterwards even when the flush times out or the
        sender raises: undelivered items are counted as dropped and never
        leak into the next flush.
        """
        report = DispatchReport()
        try:
            if self._timeout is None:
                await self._drain(report)
            else:
                await asyncio.wait_for(self._drain(report), self._timeout)
        except asyncio.TimeoutError:
            report.timed_out = True
            logger.warning("Dispatch timed out after %.1fs", self._timeout)
        except Exception:
            logger.exception("Dispatch aborted after %d sent", report.sent)
            raise
        finally:
            report.dropped += self._drop_pending()
            if report.dropped:
                logger.warning("%d queued messages dropped (%d sent, %d failed)",
                               report.dropped, report.sent, report.failed)
        return report

    async def deliver(self, chat_id: int, texts: Sequence[str]) -> DispatchReport:
        for text in texts:
            self.submit(chat_id, text)
        return await self.flush()


async def deliver_outcome(
    dispatcher: PacedDispatcher,
    chat_id: int,
    outcome: SearchOutcome,
) -> DispatchReport:
    """Send a finished search outcome: one message per pharmacy group."""
    return await dispatcher.deliver(chat_id, outcome_messages(outcome))
