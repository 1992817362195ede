"""AutoReleaseScheduler: releases held escrows whose hold window has elapsed.

Safe to run from several ticks or processes at once: the ledger's release is
idempotent, so a record picked up twice is credited once.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from pydantic import BaseModel, Field

from hourbank.core.config import SchedulerConfig
from hourbank.core.exceptions import (
    HourbankError,
    InvalidTransitionError,
    StoreUnavailableError,
)
from hourbank.core.types import Clock
from hourbank.escrow.ledger import EscrowLedger, utc_now
from hourbank.models.escrow import SYSTEM_ACTOR

logger = logging.getLogger(__name__)


class TickReport(BaseModel):
    """What a single scheduler pass did."""

    started_at: datetime
    scanned: int = 0
    released: list[str] = Field(default_factory=list)
    already_settled: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class AutoReleaseScheduler:
    """Periodic driver of the ledger's auto-release path."""

    def __init__(
        self,
        ledger: EscrowLedger,
        *,
        config: SchedulerConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._ledger = ledger
        self._config = config or SchedulerConfig()
        self._clock = clock

    def tick(self) -> TickReport:
        """Release every due held escrow, up to ``batch_size`` per pass.

        Raises StoreUnavailableError if the due list itself cannot be read.
        """
        now = self._clock()
        report = TickReport(started_at=now)
        due = self._ledger.list_due(now, self._config.batch_size)
        report.scanned = len(due)

        for record in due:
            try:
                result = self._ledger.release(record.id, SYSTEM_ACTOR)
            except InvalidTransitionError as exc:
                # disputed or refunded between the scan and the release
                logger.info("auto-release skipped %s: %s", record.id, exc)
                report.skipped.append(record.id)
            except StoreUnavailableError as exc:
                logger.warning("auto-release of %s deferred to next tick: %s", record.id, exc)
                report.failed.append(record.id)
            except HourbankError as exc:
                logger.error("auto-release of %s failed: %s", record.id, exc)
                report.failed.append(record.id)
            else:
                if result.applied:
                    report.released.append(record.id)
                else:
                    report.already_settled.append(record.id)

        if report.scanned:
            logger.info(
                "auto-release tick: scanned=%d released=%d already=%d skipped=%d failed=%d",
                report.scanned, len(report.released), len(report.already_settled),
                len(report.skipped), len(report.failed),
            )
        return report

    async def run(self, stop: asyncio.Event) -> None:
        """Tick every ``interval_seconds`` until ``stop`` is set."""
        logger.info("auto-release scheduler started (interval=%ss, batch=%d)",
                    self._config.interval_seconds, self._config.batch_size)
        while not stop.is_set():
            try:
                await asyncio.to_thread(self.tick)
            except StoreUnavailableError as exc:
                logger.warning("auto-release tick failed, retrying next interval: %s", exc)
            except Exception:
                logger.exception("auto-release tick crashed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._config.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("auto-release scheduler stopped")
