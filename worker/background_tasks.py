"""
Background task supervision for the retention worker.

Runs each retention loop as its own asyncio task. A loop that raises is
logged and, depending on the restart policy, relaunched after an
exponential backoff or left stopped.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from observability import structured_logger, metrics


class LoopState:
    """Bookkeeping for one supervised loop."""

    def __init__(self, name: str):
        self.name = name
        self.task: Optional[asyncio.Task] = None
        self.failures = 0
        self.restarts = 0
        self.halted = False
        self.last_error: Optional[str] = None
        self.last_failure_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.task is not None and not self.task.done(),
            "halted": self.halted,
            "failures": self.failures,
            "restarts": self.restarts,
            "last_error": self.last_error,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
        }


class BackgroundTaskManager:
    """Manages the retention loops for the lifetime of the process."""

    def __init__(
        self,
        loops: List[Any],
        restart_policy: str = "restart",
        initial_backoff: float = 1.0,
        max_backoff: float = 300.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.loops = loops
        self.restart_policy = restart_policy
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep
        self._running = False
        self._states: Dict[str, LoopState] = {loop.name: LoopState(loop.name) for loop in loops}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start all retention loops."""
        if self._running:
            return

        self._running = True
        for loop in self.loops:
            state = self._states[loop.name]
            state.task = asyncio.create_task(self._supervise(loop, state), name=loop.name)

        structured_logger.log_event(
            "background_tasks.started",
            loops=[loop.name for loop in self.loops],
            restart_policy=self.restart_policy
        )

    async def stop(self):
        """Cancel all loops and wait for them to finish."""
        if not self._running:
            return

        self._running = False
        tasks = [state.task for state in self._states.values() if state.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        structured_logger.log_event("background_tasks.stopped")

    def backoff_for(self, failures: int) -> float:
        """Exponential backoff after the given number of consecutive failures."""
        if failures <= 0:
            return 0.0
        return min(self.initial_backoff * (2 ** (failures - 1)), self.max_backoff)

    async def _supervise(self, loop, state: LoopState):
        while self._running:
            started = time.monotonic()
            try:
                await loop.run_forever()
                # run_forever only returns if a loop is written to finish
                structured_logger.log_event(
                    "background_task.exited",
                    level="WARN",
                    task=loop.name
                )
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # A run that outlived the max backoff counts as healthy again
                if time.monotonic() - started > self.max_backoff:
                    state.failures = 0
                state.failures += 1
                state.last_error = str(e)
                state.last_failure_at = datetime.now(timezone.utc)
                metrics.inc_counter("background_task_failures_total", {"task": loop.name})

                structured_logger.log_event(
                    "background_task.failed",
                    level="ERROR",
                    task=loop.name,
                    error=str(e),
                    error_type=type(e).__name__,
                    failures=state.failures,
                    restart_policy=self.restart_policy
                )

                if self.restart_policy != "restart":
                    state.halted = True
                    structured_logger.log_event(
                        "background_task.halted",
                        level="ERROR",
                        task=loop.name
                    )
                    return

                delay = self.backoff_for(state.failures)
                structured_logger.log_event(
                    "background_task.restarting",
                    level="WARN",
                    task=loop.name,
                    delay_seconds=delay
                )
                await self._sleep(delay)
                state.restarts += 1
                metrics.inc_counter("background_task_restarts_total", {"task": loop.name})

    def status(self) -> Dict[str, Dict[str, Any]]:
        """Per-loop status for the health endpoint."""
        return {name: state.to_dict() for name, state in self._states.items()}
