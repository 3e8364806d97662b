"""
Activity and expiry scheduler.

Keeps one timer set per live session: an inactivity countdown that activity
resets, and an absolute countdown that only an explicit extend resets. Each
timer set owns exactly one pending timer handle, aimed at the next
interesting instant (a warning threshold or the deadline). Re-arming cancels
that handle before scheduling a new one.

Signals are delivered to handlers bound with ``bind`` and always run without
the scheduler lock held, so handlers may call back into the scheduler.
"""

import itertools
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from .evaluator import utcnow
from .models import WarningReason

TimerFactory = Callable[[float, Callable[[], None]], Any]
WarningHandler = Callable[[str, WarningReason, int], None]
ExpiryHandler = Callable[[str, int], None]


def thread_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Daemon threading.Timer; the default timer factory."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


@dataclass
class _TimerSet:
    session_id: str
    inactivity_deadline: datetime
    absolute_deadline: datetime
    inactivity_warned: bool = False
    absolute_warned: bool = False
    generation: int = 0
    handle: Any = None
    not_before: Optional[datetime] = None

    @property
    def deadline(self) -> datetime:
        return min(self.inactivity_deadline, self.absolute_deadline)


class ExpiryScheduler:
    """
    Drives WARNING and EXPIRED signals for live sessions.

    Each firing carries a generation number. A handler receiving a signal can
    ask ``is_superseded`` whether the session was re-armed after the signal
    was produced and, if so, drop it.
    """

    def __init__(
        self,
        warning_threshold: timedelta,
        clock: Callable[[], datetime] = utcnow,
        timer_factory: TimerFactory = thread_timer,
    ):
        """
        Initialize scheduler.

        Args:
            warning_threshold: How long before a deadline to warn
            clock: Source of "now"
            timer_factory: Creates a startable, cancellable timer
        """
        self.warning_threshold = warning_threshold
        self._clock = clock
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timers: Dict[str, _TimerSet] = {}
        self._generations = itertools.count(1)
        self._on_warning: Optional[WarningHandler] = None
        self._on_expired: Optional[ExpiryHandler] = None

    def bind(self, on_warning: WarningHandler, on_expired: ExpiryHandler) -> None:
        """Register the signal handlers."""
        self._on_warning = on_warning
        self._on_expired = on_expired

    # ========================================================================
    # Arming
    # ========================================================================

    def arm(
        self,
        session_id: str,
        inactivity_deadline: datetime,
        absolute_deadline: datetime,
    ) -> None:
        """
        Start (or restart) both countdowns for a session.

        Any pending signal for the session is cancelled first.
        """
        with self._lock:
            previous = self._timers.pop(session_id, None)
            if previous is not None and previous.handle is not None:
                previous.handle.cancel()

            timer_set = _TimerSet(
                session_id=session_id,
                inactivity_deadline=inactivity_deadline,
                absolute_deadline=absolute_deadline,
            )
            self._timers[session_id] = timer_set
            self._schedule_locked(timer_set)

    def touch(self, session_id: str, inactivity_deadline: datetime) -> bool:
        """
        Restart the inactivity countdown only.

        Returns:
            False if the session is not scheduled (already expired or
            cancelled), in which case nothing happens
        """
        with self._lock:
            timer_set = self._timers.get(session_id)
            if timer_set is None:
                return False

            if timer_set.handle is not None:
                timer_set.handle.cancel()
            timer_set.inactivity_deadline = inactivity_deadline
            timer_set.inactivity_warned = False
            self._schedule_locked(timer_set)
            return True

    def defer_warning(
        self, session_id: str, reason: WarningReason, retry_after: timedelta
    ) -> bool:
        """
        Re-issue a warning that could not be delivered.

        Clears the warn-once flag for ``reason`` and holds the next firing
        back by ``retry_after``, but never past the deadline. The generation
        is kept, so sibling signals from the same firing stay current.

        Returns:
            False if the session is not scheduled
        """
        with self._lock:
            timer_set = self._timers.get(session_id)
            if timer_set is None:
                return False

            if reason is WarningReason.INACTIVITY:
                timer_set.inactivity_warned = False
            else:
                timer_set.absolute_warned = False
            timer_set.not_before = self._clock() + retry_after

            if timer_set.handle is not None:
                timer_set.handle.cancel()
            self._schedule_locked(timer_set, generation=timer_set.generation)
            return True

    def cancel(self, session_id: str) -> bool:
        """Stop scheduling a session. Returns False if it wasn't scheduled."""
        with self._lock:
            timer_set = self._timers.pop(session_id, None)
            if timer_set is None:
                return False
            if timer_set.handle is not None:
                timer_set.handle.cancel()

        logger.debug(f"Timers cancelled for session {session_id[:8]}")
        return True

    def shutdown(self) -> None:
        """Cancel every pending timer."""
        with self._lock:
            timer_sets = list(self._timers.values())
            self._timers.clear()

        for timer_set in timer_sets:
            if timer_set.handle is not None:
                timer_set.handle.cancel()

        if timer_sets:
            logger.info(f"Scheduler stopped, {len(timer_sets)} sessions unscheduled")

    # ========================================================================
    # Queries
    # ========================================================================

    def is_armed(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._timers

    def is_superseded(self, session_id: str, generation: int) -> bool:
        """True if the session was re-armed after ``generation`` was issued."""
        with self._lock:
            timer_set = self._timers.get(session_id)
            return timer_set is not None and timer_set.generation != generation

    def generation(self, session_id: str) -> Optional[int]:
        """Generation of the pending timer, or None if not scheduled."""
        with self._lock:
            timer_set = self._timers.get(session_id)
            return timer_set.generation if timer_set is not None else None

    def deadlines(self, session_id: str) -> Optional[Tuple[datetime, datetime]]:
        """(inactivity deadline, absolute deadline) for a scheduled session."""
        with self._lock:
            timer_set = self._timers.get(session_id)
            if timer_set is None:
                return None
            return timer_set.inactivity_deadline, timer_set.absolute_deadline

    def scheduled_sessions(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    # ========================================================================
    # Firing
    # ========================================================================

    def _schedule_locked(self, timer_set: _TimerSet, generation: Optional[int] = None) -> None:
        candidates = [timer_set.deadline]
        if not timer_set.inactivity_warned:
            candidates.append(timer_set.inactivity_deadline - self.warning_threshold)
        if not timer_set.absolute_warned:
            candidates.append(timer_set.absolute_deadline - self.warning_threshold)

        fire_at = min(candidates)
        if timer_set.not_before is not None:
            fire_at = min(max(fire_at, timer_set.not_before), timer_set.deadline)
        delay = max(0.0, (fire_at - self._clock()).total_seconds())
        if generation is None:
            generation = next(self._generations)

        def fire() -> None:
            self._fire(timer_set.session_id, generation)

        timer_set.generation = generation
        timer_set.handle = self._timer_factory(delay, fire)
        timer_set.handle.start()

    def _fire(self, session_id: str, generation: int) -> None:
        warnings: List[WarningReason] = []
        expired = False

        with self._lock:
            timer_set = self._timers.get(session_id)
            if timer_set is None or timer_set.generation != generation:
                # Cancelled or re-armed after this timer was started
                return

            now = self._clock()
            if now >= timer_set.deadline:
                del self._timers[session_id]
                expired = True
            else:
                timer_set.not_before = None
                if (
                    not timer_set.inactivity_warned
                    and now >= timer_set.inactivity_deadline - self.warning_threshold
                ):
                    timer_set.inactivity_warned = True
                    warnings.append(WarningReason.INACTIVITY)
                if (
                    not timer_set.absolute_warned
                    and now >= timer_set.absolute_deadline - self.warning_threshold
                ):
                    timer_set.absolute_warned = True
                    warnings.append(WarningReason.ABSOLUTE)
                self._schedule_locked(timer_set)
                generation = timer_set.generation

        if expired:
            logger.debug(f"Expiry signal for session {session_id[:8]}")
            if self._on_expired is not None:
                self._on_expired(session_id, generation)
            return

        for reason in warnings:
            logger.debug(f"Warning signal ({reason.value}) for session {session_id[:8]}")
            if self._on_warning is not None:
                self._on_warning(session_id, reason, generation)
