"""Bounded worker pool for live trade simulations.

Directional decisions are submitted as SimulationJobs and replayed by N
asyncio workers. Submitting never blocks the caller: when the queue is
full the job is either rejected or the oldest queued job is dropped,
depending on the overflow policy.

Completed trades are fanned out to every registered TradeSink and fed
back to the predictor. A failing sink is logged and does not affect the
other sinks or the worker.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from app.services.sinks import TradeSink
from core.models.candle import Candle, OhlcvSeries
from core.models.decision import DirectionalDecision, TradeDecision
from core.models.trade import SimulatedTrade
from core.prediction import Predictor
from core.simulation import TradeSimulator

logger = logging.getLogger(__name__)


class OverflowPolicy(str, Enum):
    REJECT = "reject"
    DROP_OLDEST = "drop_oldest"


@dataclass(slots=True)
class SimulationJob:
    """One decision plus the candles that followed it."""

    decision: DirectionalDecision
    candles: Sequence[Candle] | OhlcvSeries


@dataclass(slots=True)
class PoolStats:
    submitted: int = 0
    completed: int = 0
    rejected: int = 0
    dropped: int = 0
    failed: int = 0
    sink_errors: int = 0


class SimulationPool:
    """Asyncio queue drained by a fixed number of simulation workers."""

    def __init__(
        self,
        simulator: TradeSimulator | None = None,
        workers: int = 4,
        queue_size: int = 1000,
        overflow_policy: OverflowPolicy | str = OverflowPolicy.REJECT,
        predictor: Predictor | None = None,
        sinks: list[TradeSink] | None = None,
    ):
        self.simulator = simulator or TradeSimulator()
        self.workers = max(1, workers)
        self.queue_size = max(1, queue_size)
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self.predictor = predictor
        self.stats = PoolStats()

        self._sinks: list[TradeSink] = list(sinks or [])
        self._queue: asyncio.Queue[SimulationJob] | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def add_sink(self, sink: TradeSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: TradeSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create the queue and spawn the workers (idempotent)."""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [
            asyncio.create_task(self._worker(i, self._queue), name=f"simulation-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(
            f"Simulation pool started: {self.workers} workers, "
            f"queue {self.queue_size}, overflow={self.overflow_policy.value}"
        )

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers, optionally finishing queued jobs first."""
        if not self.running:
            return
        if drain:
            await self.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(
            f"Simulation pool stopped: {self.stats.completed} completed, "
            f"{self.stats.rejected} rejected, {self.stats.dropped} dropped"
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, job: SimulationJob) -> bool:
        """Enqueue a job without blocking.

        Returns:
            True if the job was queued, False if it was rejected (pool not
            started, HOLD decision, or queue full under the reject policy)
        """
        if self._queue is None or not self.running:
            logger.warning("Simulation pool not running, job for %s rejected", job.decision.symbol)
            self.stats.rejected += 1
            return False
        if not isinstance(job.decision, DirectionalDecision):
            logger.debug("HOLD decision for %s not simulated", job.decision.symbol)
            return False

        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            if self.overflow_policy == OverflowPolicy.REJECT:
                self.stats.rejected += 1
                logger.warning(
                    f"Simulation queue full ({self.queue_size}), "
                    f"rejected {job.decision.symbol} {job.decision.direction}"
                )
                return False
            dropped = self._queue.get_nowait()
            self._queue.task_done()
            self.stats.dropped += 1
            logger.warning(
                f"Simulation queue full ({self.queue_size}), dropped oldest job "
                f"{dropped.decision.symbol} @ {dropped.decision.timestamp}"
            )
            self._queue.put_nowait(job)

        self.stats.submitted += 1
        return True

    def submit_decision(
        self, decision: TradeDecision, candles: Sequence[Candle] | OhlcvSeries
    ) -> bool:
        """Convenience wrapper that skips HOLD decisions."""
        if not isinstance(decision, DirectionalDecision):
            return False
        return self.submit(SimulationJob(decision, candles))

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, index: int, queue: asyncio.Queue) -> None:
        while True:
            job = await queue.get()
            try:
                await self._process(job)
            except Exception as e:
                self.stats.failed += 1
                logger.error(
                    f"Simulation worker {index} failed on {job.decision.symbol}: {e}",
                    exc_info=True,
                )
            finally:
                queue.task_done()

    async def _process(self, job: SimulationJob) -> None:
        trade = await asyncio.to_thread(self.simulator.simulate, job.decision, job.candles)
        if trade is None:
            return
        self.stats.completed += 1
        await self._publish(trade)
        self._feedback(trade)

    async def _publish(self, trade: SimulatedTrade) -> None:
        for sink in list(self._sinks):
            try:
                result = sink.on_trade(trade)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.stats.sink_errors += 1
                logger.error(
                    f"Trade sink {type(sink).__name__} failed for {trade.signal_id}: {e}",
                    exc_info=True,
                )

    def _feedback(self, trade: SimulatedTrade) -> None:
        if self.predictor is None:
            return
        try:
            self.predictor.ingest_outcome(
                trade.symbol, trade.features, trade.label, trade.r, trade.pnl_ratio
            )
        except Exception as e:
            logger.error(f"Predictor feedback failed for {trade.symbol}: {e}", exc_info=True)
