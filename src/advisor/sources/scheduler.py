"""Refresh scheduler -- keeps every configured source fresh.

Each pass:
  1. SELECT: sources whose next due time has passed (or never attempted)
  2. DISPATCH: fetch -> normalize -> append, bounded by a semaphore
  3. RECORD: update the per-source state table
  4. EMIT: one FetchOutcome per dispatched source (log + listeners)

Failures are isolated per source: a failing unit never aborts the pass.
After a failure the source's next due time widens exponentially, capped at
``backoff_cap`` times its interval; it is never dropped because of failures.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from advisor.config import SchedulerSettings
from advisor.exceptions import (
    ConfigError,
    FetchFailureKind,
    ParseError,
    TransientFetchError,
)
from advisor.history.store import PriceHistoryStore
from advisor.logging import get_logger
from advisor.models import DataSourceConfig, PriceRecord, SourceState
from advisor.sources.fetcher import SourceFetcher
from advisor.sources.normalizers import NormalizerRegistry
from advisor.sources.registry import SourceRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one fetch-normalize-store unit for one source."""

    owner: str
    source_key: str
    success: bool
    latency_seconds: float
    attempted_at: float
    consecutive_failures: int
    error_kind: str | None = None  # FetchFailureKind value, "parse" or "unexpected"
    error: str | None = None


def backoff_delay(interval: float, failures: int, cap: int) -> float:
    """Delay until the next attempt: interval * min(2^failures, cap).

    With zero failures this is the plain refresh interval.
    """
    if failures <= 0:
        return float(interval)
    return float(interval) * min(2**failures, max(cap, 1))


def next_due_at(state: SourceState, interval: float, cap: int) -> float | None:
    """When the source is next due, or None if it was never attempted."""
    anchor = state.last_attempt
    if anchor is None:
        anchor = state.last_successful_refresh
    if anchor is None:
        return None
    return anchor + backoff_delay(interval, state.consecutive_failures, cap)


class Scheduler:
    """Dispatches due sources concurrently and owns their refresh state table.

    Args:
        registry: Configured sources; snapshotted once per pass.
        fetcher: Single-attempt HTTP fetcher.
        normalizers: Kind -> parse strategy registry.
        history: Destination for normalized records.
        settings: Concurrency, timeout and backoff parameters.
        clock: Source of "now" in Unix seconds.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        fetcher: SourceFetcher,
        normalizers: NormalizerRegistry,
        history: PriceHistoryStore,
        settings: SchedulerSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._fetcher = fetcher
        self._normalizers = normalizers
        self._history = history
        self._settings = settings
        self._clock = clock
        self._state: dict[tuple[str, str], SourceState] = {}
        self._listeners: list[Callable[[FetchOutcome], None]] = []
        self._semaphore = asyncio.Semaphore(max(settings.max_concurrency, 1))
        self._pass_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    # ──────────────────────────────────────────────
    # State table
    # ──────────────────────────────────────────────

    def add_listener(self, listener: Callable[[FetchOutcome], None]) -> None:
        """Register a callback invoked with every FetchOutcome."""
        self._listeners.append(listener)

    def state(self, owner: str, source_key: str) -> SourceState:
        """State for one source (a fresh, never-attempted state if unknown)."""
        return self._state.setdefault((owner, source_key), SourceState())

    def states(self) -> dict[tuple[str, str], SourceState]:
        return dict(self._state)

    def next_due(self, config: DataSourceConfig) -> float | None:
        return next_due_at(
            self.state(*config.identity),
            config.refresh_interval_seconds,
            self._settings.backoff_cap,
        )

    def due_sources(self, now: float) -> list[DataSourceConfig]:
        """Sources whose next due time is at or before ``now``.

        Also drops state for sources that are no longer configured.
        """
        snapshot = self._registry.snapshot()
        configured = {c.identity for c in snapshot}
        for ident in [k for k in self._state if k not in configured]:
            del self._state[ident]

        due: list[DataSourceConfig] = []
        for config in snapshot:
            due_at = self.next_due(config)
            if due_at is None or due_at <= now:
                due.append(config)
        return due

    # ──────────────────────────────────────────────
    # Dispatch
    # ──────────────────────────────────────────────

    async def run_pass(self, now: float | None = None) -> list[FetchOutcome]:
        """Refresh every due source once. Returns one outcome per dispatched source."""
        async with self._pass_lock:
            if now is None:
                now = self._clock()
            due = self.due_sources(now)
            if not due:
                return []
            outcomes = await asyncio.gather(
                *(self._refresh(config, now) for config in due)
            )
            logger.info(
                "refresh_pass_complete",
                dispatched=len(due),
                succeeded=sum(1 for o in outcomes if o.success),
                failed=sum(1 for o in outcomes if not o.success),
            )
            return list(outcomes)

    async def refresh_source(self, owner: str, source_key: str) -> FetchOutcome:
        """Refresh one source now, regardless of its due time.

        Raises:
            ConfigError: If the source is not configured.
        """
        config = self._registry.get(owner, source_key)
        if config is None:
            raise ConfigError(f"unknown source {source_key!r} for owner {owner!r}")
        return await self._refresh(config, self._clock())

    async def _fetch_and_normalize(
        self, config: DataSourceConfig, now: float
    ) -> PriceRecord:
        payload = await self._fetcher.fetch(config)
        return self._normalizers.normalize(payload.body, config, now)

    async def _refresh(self, config: DataSourceConfig, now: float) -> FetchOutcome:
        """One fetch-normalize-store unit. Never raises (except cancellation)."""
        error_kind: str | None = None
        error: str | None = None

        async with self._semaphore:
            with structlog.contextvars.bound_contextvars(
                owner=config.owner, source_key=config.source_key
            ):
                start = time.monotonic()
                try:
                    record = await asyncio.wait_for(
                        self._fetch_and_normalize(config, now),
                        timeout=self._settings.fetch_timeout_seconds,
                    )
                    await self._history.append(record)
                except asyncio.TimeoutError:
                    error_kind = FetchFailureKind.TIMEOUT.value
                    error = f"unit exceeded {self._settings.fetch_timeout_seconds}s"
                except TransientFetchError as e:
                    error_kind = e.kind.value
                    error = str(e)
                except ParseError as e:
                    error_kind = "parse"
                    error = str(e)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("source_refresh_unexpected_error", exc_info=True)
                    error_kind = "unexpected"
                    error = f"{type(e).__name__}: {e}"
                latency = time.monotonic() - start

                outcome = self._record(config, now, latency, error_kind, error)
                self._emit(outcome)
                return outcome

    def _record(
        self,
        config: DataSourceConfig,
        now: float,
        latency: float,
        error_kind: str | None,
        error: str | None,
    ) -> FetchOutcome:
        state = self.state(*config.identity)
        state.last_attempt = now
        if error_kind is None:
            state.last_successful_refresh = now
            state.consecutive_failures = 0
        else:
            state.consecutive_failures += 1
        return FetchOutcome(
            owner=config.owner,
            source_key=config.source_key,
            success=error_kind is None,
            latency_seconds=latency,
            attempted_at=now,
            consecutive_failures=state.consecutive_failures,
            error_kind=error_kind,
            error=error,
        )

    def _emit(self, outcome: FetchOutcome) -> None:
        if outcome.success:
            logger.info(
                "source_refreshed",
                latency_ms=round(outcome.latency_seconds * 1000, 1),
            )
        else:
            logger.warning(
                "source_refresh_failed",
                error_kind=outcome.error_kind,
                error=outcome.error,
                consecutive_failures=outcome.consecutive_failures,
                latency_ms=round(outcome.latency_seconds * 1000, 1),
            )
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception:
                logger.warning("outcome_listener_failed", exc_info=True)

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Begin periodic refresh passes in the background."""
        if self.running:
            logger.warning("scheduler_already_running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "scheduler_started",
            sources=len(self._registry),
            tick_seconds=self._settings.tick_seconds,
            max_concurrency=self._settings.max_concurrency,
        )

    async def stop(self) -> None:
        """Stop dispatching. In-flight fetches finish or time out first."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("scheduler_stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_pass()
            except Exception:
                logger.error("refresh_pass_error", exc_info=True)
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._settings.tick_seconds
                )
            except asyncio.TimeoutError:
                pass
