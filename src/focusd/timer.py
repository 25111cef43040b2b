# focusd/timer.py
"""Pomodoro state machine.

Holds the single authoritative timer state. The daemon owns exactly one
instance and only its consumer loop calls the mutating methods, so nothing
here is synchronized.
"""
import logging
from typing import Callable, Optional

from .models import Phase, StateSnapshot, TimerConfig

logger = logging.getLogger(__name__)

OnPhaseEnd = Callable[[Phase, Phase], None]
OnPostponeEnd = Callable[[Phase], None]


class CommandRefused(Exception):
    """Raised when a command is not valid in the current state."""
    pass


class TimerStateMachine:
    """Work/break cycle advanced by ticks and commands.

    Every mutating method returns True when observers should receive a new
    snapshot.

    A break can be postponed up to ``postpone_limit`` times. While postponed
    the phase stays on the break but ``remaining`` counts down the postpone
    timer; when it runs out the break starts over at its full duration.
    """

    def __init__(
        self,
        config: TimerConfig,
        on_phase_end: Optional[OnPhaseEnd] = None,
        on_postpone_end: Optional[OnPostponeEnd] = None,
    ):
        self.config = config
        self.on_phase_end = on_phase_end
        self.on_postpone_end = on_postpone_end
        self._reset_state()

    def _reset_state(self):
        self.phase = Phase.WORK
        self.remaining = self.config.work
        self.paused = self.config.starts_paused(Phase.WORK)
        self.completed_sessions = 0
        self.postponed = False
        self.postpone_count = 0

    def snapshot(self) -> StateSnapshot:
        """Copy of the current state."""
        return StateSnapshot(
            phase=self.phase,
            remaining=self.remaining,
            paused=self.paused,
            completed_sessions=self.completed_sessions,
            postponed=self.postponed,
            postpone_count=self.postpone_count,
        )

    @property
    def can_postpone(self) -> bool:
        return (
            self.phase.is_break
            and not self.postponed
            and self.postpone_count < self.config.postpone_limit
        )

    def tick(self) -> bool:
        """Advance the running timer by one unit."""
        if self.paused:
            return False

        self.remaining = max(self.remaining - 1, 0)

        if self.remaining == 0 and self.postponed:
            self._end_postpone()
            logger.info(f"Postpone over, {self.phase.value} starts")
            if self.on_postpone_end is not None:
                self.on_postpone_end(self.phase)
        elif self.remaining == 0:
            finished = self.phase
            self._transition()
            logger.info(f"{finished.value} finished, next: {self.phase.value}")
            if self.on_phase_end is not None:
                self.on_phase_end(finished, self.phase)

        self._ensure_consistent()
        return True

    def pause(self) -> bool:
        self.paused = True
        return True

    def resume(self) -> bool:
        self.paused = False
        return True

    def toggle(self) -> bool:
        if self.paused:
            return self.resume()
        return self.pause()

    def skip(self) -> bool:
        """Expire the current phase immediately.

        During a postpone only the postpone timer is cut short.
        """
        if self.postponed:
            self._end_postpone()
            logger.info(f"Postpone skipped, {self.phase.value} starts")
        else:
            skipped = self.phase
            self._transition()
            logger.info(f"{skipped.value} skipped, next: {self.phase.value}")
        self._ensure_consistent()
        return True

    def postpone(self) -> bool:
        """Push the current break back by ``postpone_timer`` seconds.

        Raises CommandRefused outside a break, during a postpone, or once the
        break has used up its postpones.
        """
        if not self.phase.is_break:
            raise CommandRefused("only a break can be postponed")
        if self.config.postpone_limit == 0:
            raise CommandRefused("postponing is disabled")
        if not self.can_postpone:
            if self.postponed:
                raise CommandRefused("break is already postponed")
            raise CommandRefused(f"break already postponed {self.postpone_count} time(s)")

        self.postpone_count += 1
        self.postponed = True
        self.remaining = self.config.postpone_timer
        self.paused = False
        logger.info(
            f"{self.phase.value} postponed "
            f"({self.postpone_count}/{self.config.postpone_limit})"
        )
        self._ensure_consistent()
        return True

    def reset(self) -> bool:
        """Return to the first work session."""
        self._reset_state()
        logger.info("Timer reset")
        return True

    def _transition(self):
        if self.phase is Phase.WORK:
            self.completed_sessions += 1
            if self.completed_sessions % self.config.sessions_before_long_break == 0:
                self.phase = Phase.LONG_BREAK
            else:
                self.phase = Phase.SHORT_BREAK
        else:
            self.phase = Phase.WORK

        self.postponed = False
        self.postpone_count = 0
        self.remaining = self.config.duration(self.phase)
        self.paused = self.config.starts_paused(self.phase)

    def _end_postpone(self):
        self.postponed = False
        self.remaining = self.config.duration(self.phase)
        self.paused = self.config.starts_paused(self.phase)

    def _current_duration(self) -> int:
        if self.postponed:
            return self.config.postpone_timer
        return self.config.duration(self.phase)

    def _ensure_consistent(self):
        # Unreachable through the public methods.
        valid = isinstance(self.phase, Phase) and (
            0 <= self.remaining <= self._current_duration()
            and self.completed_sessions >= 0
            and 0 <= self.postpone_count <= self.config.postpone_limit
            and (self.phase.is_break or not self.postponed)
        )
        if not valid:
            logger.error(
                f"Inconsistent timer state (phase={self.phase!r}, "
                f"remaining={self.remaining!r}, sessions={self.completed_sessions!r}, "
                f"postponed={self.postponed!r}), resetting"
            )
            self._reset_state()
