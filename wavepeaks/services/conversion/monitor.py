from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from wavepeaks.core.config import Settings, settings as default_settings
from wavepeaks.core.logging import logger
from wavepeaks.services.conversion.models import (
    ConversionJob,
    Failed,
    FailureKind,
    MonitorOutcome,
    ProgressUpdate,
    Ready,
)
from wavepeaks.services.conversion.strategies import Sleep, WaitStrategy, select_strategy

ProgressObserver = Callable[[ProgressUpdate], Union[None, Awaitable[Any]]]


class ConversionJobMonitor:
    """
    Track one conversion job until it is ready or failed.

    The strategy (event stream or polling) is picked per call from the
    endpoints the job carries. One wall-clock ceiling covers the whole wait,
    whatever the strategy's own pacing. Nothing is retried here.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings or default_settings
        self._transport = transport
        self._sleep = sleep

    def strategy_for(
        self,
        job: ConversionJob,
        prefer: str | None = None,
        max_attempts: int | None = None,
    ) -> WaitStrategy:
        return select_strategy(
            job,
            self.settings,
            transport=self._transport,
            prefer=prefer,
            max_attempts=max_attempts,
            sleep=self._sleep,
        )

    async def wait(
        self,
        job: ConversionJob,
        timeout: float | None = None,
        on_progress: Optional[ProgressObserver] = None,
        cancel: asyncio.Event | None = None,
        prefer: str | None = None,
        max_attempts: int | None = None,
    ) -> MonitorOutcome:
        if job.terminal:
            return Ready(job.asset_location) if job.asset_location else job.failure

        budget = self.settings.MONITOR_TIMEOUT_S if timeout is None else timeout
        strategy = self.strategy_for(job, prefer=prefer, max_attempts=max_attempts)
        emit = self._emitter(on_progress)
        t0 = time.monotonic()

        job.mark_converting()
        logger.info(f"[monitor] job={job.id} strategy={strategy.name} budget={budget:.1f}s")

        try:
            async with asyncio.timeout(budget):
                if cancel is None:
                    outcome = await strategy.run(job, emit)
                else:
                    outcome = await self._run_cancellable(strategy, job, emit, cancel)
        except TimeoutError:
            outcome = Failed(FailureKind.timeout, f"conversion not ready within {budget:.1f}s")
        except asyncio.CancelledError:
            job.mark_failed(Failed(FailureKind.cancelled, "monitoring task cancelled"))
            logger.info(f"[monitor] job={job.id} cancelled after {time.monotonic() - t0:.2f}s")
            raise

        job.settle(outcome)
        elapsed = time.monotonic() - t0
        if isinstance(outcome, Ready):
            logger.info(f"[monitor] job={job.id} ready in {elapsed:.2f}s asset={outcome.asset_location}")
        else:
            logger.warning(f"[monitor] job={job.id} failed ({outcome.kind.value}) in {elapsed:.2f}s: {outcome.message}")

        await emit(ProgressUpdate(
            job_id=job.id,
            status=job.status.value,
            progress=1.0 if isinstance(outcome, Ready) else None,
            terminal=True,
            detail={"elapsed_s": round(elapsed, 3)},
        ))
        return outcome

    async def _run_cancellable(
        self,
        strategy: WaitStrategy,
        job: ConversionJob,
        emit,
        cancel: asyncio.Event,
    ) -> MonitorOutcome:
        runner = asyncio.ensure_future(strategy.run(job, emit))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({runner, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if runner.done():
                return runner.result()
            return Failed(FailureKind.cancelled, "cancelled by caller")
        finally:
            for task in (runner, waiter):
                if not task.done():
                    task.cancel()
            # let the strategy close its connection before we return
            await asyncio.gather(runner, waiter, return_exceptions=True)

    def _emitter(self, observer: Optional[ProgressObserver]):
        async def emit(update: ProgressUpdate) -> None:
            if observer is None:
                return
            try:
                result = observer(update)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"[monitor] job={update.job_id} progress observer raised, ignoring")

        return emit
