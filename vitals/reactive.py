"""Reactive view layer: recompute derived views on data, user and selection changes.

One ViewEngine per session, owned by a single event loop. It publishes
immutable ViewState snapshots:
- ``set_user`` resets every view before the new user's data arrives
- ``select`` publishes LOADING synchronously, submits a sync, and once the
  sync finishes, fails or times out recomputes history from the local store
  on every change
- the dashboard follows the trailing week ending today and moves its window
  at local midnight
- each publish is tagged with a generation, so a superseded user or
  selection can never overwrite a newer view
- subscribers get conflated, de-duplicated snapshots via ``states()``
"""

import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import aclosing
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Any

import structlog

from shared.config import Settings, settings
from shared.metrics import view_recomputations_total
from vitals.aggregation import daily_summary, history_view, selection_window
from vitals.domain.calendar import day_bounds, local_date, start_of_day
from vitals.domain.models import MetricKind
from vitals.domain.views import HistoryView, Selection, ViewState, ViewStatus
from vitals.store import SampleStore
from vitals.sync import SyncHandle, SyncOrchestrator, SyncRequest

logger = structlog.get_logger()

DEFAULT_USER_NAME = "User"
DASHBOARD_DAYS = 7


def first_name(display_name: str | None) -> str:
    """First given name of a display name; "User" when there is none."""
    if not display_name or not display_name.strip():
        return DEFAULT_USER_NAME
    return display_name.split()[0]


@dataclass(frozen=True)
class UserSession:
    user_id: str
    display_name: str = DEFAULT_USER_NAME

    @classmethod
    def from_profile(cls, user_id: str, full_name: str | None) -> "UserSession":
        return cls(user_id=user_id, display_name=first_name(full_name))


class _Mailbox:
    """Holds only the newest snapshot for one subscriber."""

    def __init__(self, initial: ViewState):
        self.latest = initial
        self.ready = asyncio.Event()
        self.ready.set()

    def put(self, state: ViewState) -> None:
        self.latest = state
        self.ready.set()


class ViewEngine:
    def __init__(
        self,
        store: SampleStore,
        orchestrator: SyncOrchestrator,
        config: Settings = settings,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.config = config
        self.tz = orchestrator.tz
        self.clock = orchestrator.clock

        self._state = ViewState()
        self._session: UserSession | None = None
        self._user_generation = 0
        self._selection_generation = 0
        self._dashboard_task: asyncio.Task | None = None
        self._history_task: asyncio.Task | None = None
        self._mailboxes: set[_Mailbox] = set()
        self._closed = False

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def session(self) -> UserSession | None:
        return self._session

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def set_user(self, user_id: str, display_name: str | None = None) -> UserSession:
        """Switch the active user, resetting all views to their defaults."""
        session = UserSession.from_profile(user_id, display_name)
        if self._session == session:
            return session

        self._cancel(self._dashboard_task, self._history_task)
        self._user_generation += 1
        self._selection_generation += 1
        self._session = session
        self._publish(ViewState(user_id=session.user_id, user_name=session.display_name))
        logger.info("view_user_changed", user_id=user_id)

        generation = self._user_generation
        self._dashboard_task = self._spawn(
            self._watch_dashboard(session, generation), f"dashboard:{user_id}"
        )
        return session

    def refresh(self) -> SyncHandle:
        """Submit the today sync (summary plus every metric) for the active user."""
        session = self._require_session()
        return self.orchestrator.submit(SyncRequest(user_id=session.user_id))

    def select(self, metric: MetricKind, selected_date: date) -> Selection:
        """Request history for ``metric`` on ``selected_date``.

        The LOADING view is published before this returns.
        """
        session = self._require_session()
        selection = Selection(metric=MetricKind(metric), selected_date=selected_date)

        self._cancel(self._history_task)
        self._selection_generation += 1
        generation = (self._user_generation, self._selection_generation)

        start, end = selection_window(selection, self.clock(), self.tz)
        self._publish(
            replace(
                self._state,
                history=HistoryView(
                    selection=selection,
                    status=ViewStatus.LOADING,
                    window_start_millis=start,
                    window_end_millis=end,
                ),
            )
        )

        handle = self.orchestrator.submit(
            SyncRequest(
                user_id=session.user_id, kind=selection.metric, start_millis=start, end_millis=end
            )
        )
        self._history_task = self._spawn(
            self._watch_history(session, selection, handle, generation),
            f"history:{session.user_id}:{selection.metric}",
        )
        logger.info(
            "view_selection_changed",
            user_id=session.user_id,
            metric=selection.metric.value,
            selected_date=selected_date.isoformat(),
        )
        return selection

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def states(self) -> AsyncIterator[ViewState]:
        """Current snapshot, then each new distinct snapshot.

        A slow consumer skips intermediate snapshots and sees only the latest.
        """
        box = _Mailbox(self._state)
        self._mailboxes.add(box)
        last: ViewState | None = None
        try:
            while True:
                await box.ready.wait()
                box.ready.clear()
                if self._closed:
                    return
                state = box.latest
                if state == last:
                    continue
                last = state
                yield state
        finally:
            self._mailboxes.discard(box)

    async def close(self) -> None:
        """Cancel all watchers and end every ``states()`` iterator."""
        tasks = [t for t in (self._dashboard_task, self._history_task) if t is not None]
        self._cancel(*tasks)
        await asyncio.gather(*tasks, return_exceptions=True)
        self._closed = True
        for box in self._mailboxes:
            box.ready.set()

    # ------------------------------------------------------------------
    # Watchers
    # ------------------------------------------------------------------

    async def _watch_dashboard(self, session: UserSession, generation: int) -> None:
        """Follow the trailing week ending today, moving the window at local midnight."""
        while generation == self._user_generation:
            today = local_date(self.clock(), self.tz)
            _, end = day_bounds(today, self.tz)
            try:
                async with asyncio.timeout(max(end - self.clock(), 0) / 1000):
                    rolled_over = await self._follow_dashboard(session, generation, today)
            except TimeoutError:
                rolled_over = True
            if not rolled_over:
                return
            logger.debug("dashboard_window_moved", user_id=session.user_id)

    async def _follow_dashboard(self, session: UserSession, generation: int, today: date) -> bool:
        """Recompute on every change in the week ending ``today``.

        Returns True once the local date is no longer ``today``.
        """
        start = start_of_day(today - timedelta(days=DASHBOARD_DAYS - 1), self.tz)
        _, end = day_bounds(today, self.tz)

        async with aclosing(self.store.watch_range(session.user_id, start, end)) as snapshots:
            async for records in snapshots:
                if generation != self._user_generation:
                    return False
                now = self.clock()
                if local_date(now, self.tz) != today:
                    return True
                view = daily_summary(
                    records,
                    session.user_id,
                    session.display_name,
                    now,
                    self.tz,
                    self.config.night_start_hour,
                )
                view_recomputations_total.labels(view="dashboard").inc()
                self._publish(replace(self._state, dashboard=view))
                logger.debug("view_recomputed", view="dashboard", user_id=session.user_id)
        return False

    async def _watch_history(
        self,
        session: UserSession,
        selection: Selection,
        handle: SyncHandle,
        generation: tuple[int, int],
    ) -> None:
        try:
            await handle.wait(self.config.sync_timeout_seconds)
        except Exception:
            # stored data is still shown when the sync itself breaks
            logger.exception(
                "history_sync_failed", user_id=session.user_id, metric=selection.metric.value
            )

        start, _ = selection_window(selection, self.clock(), self.tz)
        _, end = day_bounds(selection.selected_date, self.tz)

        async with aclosing(self.store.watch_range(session.user_id, start, end)) as snapshots:
            async for records in snapshots:
                if generation != (self._user_generation, self._selection_generation):
                    logger.debug("stale_view_discarded", metric=selection.metric.value)
                    return
                view = history_view(
                    records, selection, self.clock(), self.tz, self.config.night_start_hour
                )
                view_recomputations_total.labels(view="history").inc()
                self._publish(replace(self._state, history=view))
                logger.debug(
                    "view_recomputed",
                    view="history",
                    user_id=session.user_id,
                    metric=selection.metric.value,
                    samples=len(view.samples),
                )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _publish(self, state: ViewState) -> None:
        if state == self._state:
            return
        self._state = state
        for box in self._mailboxes:
            box.put(state)

    def _require_session(self) -> UserSession:
        if self._session is None:
            raise RuntimeError("No active user; call set_user() first")
        return self._session

    @staticmethod
    def _cancel(*tasks: asyncio.Task | None) -> None:
        for task in tasks:
            if task is not None and not task.done():
                task.cancel()

    @staticmethod
    def _spawn(coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(_log_watcher_failure)
        return task


def _log_watcher_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("view_watcher_failed", task=task.get_name(), error=str(exc), exc_info=exc)
