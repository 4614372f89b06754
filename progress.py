"""Running count for the current term, milestones and debounced persistence."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from errors import ProgressStoreError
from interfaces import Cancellable, Identity, ProgressStore, Scheduler
from matching import canonicalize
from models import ProgressState

logger = logging.getLogger(__name__)

GOAL = 10_000_000
MILESTONE_SIZE = 100_000
SAVE_TICK_S = 0.5
MIN_SAVE_INTERVAL_S = 5.0
DEFAULT_TERM = "राम"

MilestoneCallback = Callable[[int], None]
CountCallback = Callable[[int], None]


class ProgressAccumulator:
    """Owns the count for the current term.

    ``increment`` is the only way the count goes up. The count never exceeds
    ``goal`` and only goes down when the term changes. Saves are debounced:
    ``save`` may be called as often as convenient (the autosave tick calls it
    every ``SAVE_TICK_S``) and the store sees at most one write per
    ``min_save_interval_s``.
    """

    def __init__(
        self,
        store: ProgressStore,
        identity: Identity,
        goal: int = GOAL,
        milestone_size: int = MILESTONE_SIZE,
        min_save_interval_s: float = MIN_SAVE_INTERVAL_S,
        default_term: str = DEFAULT_TERM,
        clock: Callable[[], float] = time.monotonic,
        on_milestone: Optional[MilestoneCallback] = None,
        on_change: Optional[CountCallback] = None,
    ) -> None:
        self._store = store
        self._identity = identity
        self._goal = goal
        self._milestone_size = milestone_size
        self._min_save_interval_s = min_save_interval_s
        self._clock = clock
        self._on_milestone = on_milestone
        self._on_change = on_change

        self._lock = threading.RLock()
        self._switch_lock = threading.Lock()
        self._state = ProgressState(term=default_term, count=0, last_saved_at=clock())
        self._target_canonical = canonicalize(default_term.strip())
        self._user_id: Optional[str] = None
        self._saved: Optional[tuple[str, int]] = None
        self._autosave: Optional[Cancellable] = None

    @property
    def state(self) -> ProgressState:
        with self._lock:
            return ProgressState(
                term=self._state.term,
                count=self._state.count,
                last_saved_at=self._state.last_saved_at,
            )

    @property
    def count(self) -> int:
        return self._state.count

    @property
    def term(self) -> str:
        return self._state.term

    @property
    def goal(self) -> int:
        return self._goal

    @property
    def target_canonical(self) -> str:
        return self._target_canonical

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def load(self) -> ProgressState:
        """Fetch the initial state once; no record means count 0 with the default term."""
        user = self._identity.get_current_user()
        record = None
        if user is not None:
            try:
                record = self._store.load_progress(user.id)
            except ProgressStoreError as exc:
                logger.warning("Loading progress failed: %s", exc)

        with self._lock:
            self._user_id = user.id if user is not None else None
            if record is not None:
                self._state.term = record.term
                self._state.count = self._clamp(record.count)
                self._target_canonical = canonicalize(record.term.strip())
            self._saved = (self._state.term, self._state.count)
            self._state.last_saved_at = self._clock()
            count = self._state.count

        logger.info("Loaded progress for %s: %s", self._user_id or "guest", count)
        if self._on_change:
            self._on_change(count)
        return self.state

    def increment(self, n: int) -> int:
        if n <= 0:
            return self._state.count
        with self._lock:
            before = self._state.count
            after = min(self._goal, before + n)
            self._state.count = after
        # One notification per jump, however many boundaries it crosses.
        milestone = after // self._milestone_size
        crossed = milestone > before // self._milestone_size and after > 0

        if after != before and self._on_change:
            self._on_change(after)
        if crossed:
            logger.info("Milestone %s reached at %s", milestone, after)
            if self._on_milestone:
                self._on_milestone(milestone)
        return after

    def tap(self) -> int:
        return self.increment(1)

    def set_term(self, term: str) -> None:
        """Switch to ``term``, resuming whatever the store holds for it.

        Switches are serialized. Counts that land on the old term while the
        store is being consulted are written for the old term once the switch
        completes.
        """
        with self._switch_lock:
            with self._lock:
                if term == self._state.term:
                    return
            self.save(force=True)

            record = None
            if self._user_id is not None and term.strip():
                try:
                    record = self._store.load_progress(self._user_id, term)
                except ProgressStoreError as exc:
                    logger.warning("Loading progress for %r failed: %s", term, exc)

            with self._lock:
                old = (self._state.term, self._state.count)
                unsaved = old if old != self._saved else None
                self._state.term = term
                self._state.count = self._clamp(record.count) if record is not None else 0
                self._target_canonical = canonicalize(term.strip())
                self._saved = (term, self._state.count)
                user_id = self._user_id
                count = self._state.count

            if unsaved is not None and user_id is not None and unsaved[0].strip():
                self._flush_old_term(user_id, *unsaved)

        if self._on_change:
            self._on_change(count)

    def _flush_old_term(self, user_id: str, term: str, count: int) -> None:
        try:
            self._store.save_progress(user_id, term, count)
        except ProgressStoreError as exc:
            logger.warning("Saving %r=%s after switching terms failed: %s", term, count, exc)
            return
        logger.info("Saved %r=%s counted during the term switch", term, count)

    def save(self, force: bool = False) -> bool:
        """Persist the current state, at most once per debounce window.

        Returns True only when the store accepted a write. Failures are logged
        and the state stays dirty so a later call retries.
        """
        with self._lock:
            now = self._clock()
            if not force and now - self._state.last_saved_at < self._min_save_interval_s:
                return False
            user_id = self._user_id
            snapshot = (self._state.term, self._state.count)
            if user_id is None or not snapshot[0].strip() or snapshot == self._saved:
                return False
            self._state.last_saved_at = now

        try:
            record = self._store.save_progress(user_id, snapshot[0], snapshot[1])
        except ProgressStoreError as exc:
            logger.warning("Saving progress failed: %s", exc)
            return False

        with self._lock:
            self._saved = snapshot
        logger.debug("Saved %r=%s (store has %s)", record.term, snapshot[1], record.count)
        return True

    def start_autosave(self, scheduler: Scheduler, interval_s: float = SAVE_TICK_S) -> None:
        with self._lock:
            if self._autosave is not None:
                return
            self._autosave = scheduler.call_every(interval_s, self.save)

    def stop_autosave(self) -> None:
        with self._lock:
            autosave, self._autosave = self._autosave, None
        if autosave is not None:
            autosave.cancel()

    def _clamp(self, count: int) -> int:
        return max(0, min(self._goal, int(count)))
