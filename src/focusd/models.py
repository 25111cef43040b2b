# focusd/models.py
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Phase(str, Enum):
    """Segment of the Pomodoro cycle."""
    WORK = "work"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"

    @property
    def is_break(self) -> bool:
        return self is not Phase.WORK


class Command(str, Enum):
    """Commands a client may send to the daemon."""
    PAUSE = "pause"
    RESUME = "resume"
    TOGGLE = "toggle"
    SKIP = "skip"
    RESET = "reset"
    ONCE = "once"
    LISTEN = "listen"
    DETACH = "detach"
    SHUTDOWN = "shutdown"
    POSTPONE = "postpone"


# Timer configuration
class TimerConfig(BaseModel):
    """Fully resolved timer configuration. Durations are in ticks (seconds)."""
    model_config = ConfigDict(frozen=True)

    work: int = Field(default=1500, gt=0)
    short_break: int = Field(default=300, gt=0)
    long_break: int = Field(default=900, gt=0)
    sessions_before_long_break: int = Field(default=4, ge=1)
    autostart_work: bool = False
    autostart_break: bool = True
    tick_interval: float = Field(default=1.0, gt=0)
    postpone_limit: int = Field(default=0, ge=0)
    postpone_timer: int = Field(default=300, gt=0)
    notifications: bool = False
    break_suggestions: list[str] = Field(default_factory=list)

    def duration(self, phase: Phase) -> int:
        """Configured duration of a phase."""
        if phase is Phase.WORK:
            return self.work
        if phase is Phase.SHORT_BREAK:
            return self.short_break
        return self.long_break

    def starts_paused(self, phase: Phase) -> bool:
        """Whether a freshly entered phase waits for a resume."""
        if phase is Phase.WORK:
            return not self.autostart_work
        return not self.autostart_break


# Snapshots
class StateSnapshot(BaseModel):
    """Immutable copy of the observable timer state."""
    model_config = ConfigDict(frozen=True)

    phase: Phase
    remaining: int
    paused: bool
    completed_sessions: int
    postponed: bool = False
    postpone_count: int = 0


# Daemon -> client messages
class SnapshotMessage(StateSnapshot):
    type: Literal["snapshot"] = "snapshot"

    def to_snapshot(self) -> StateSnapshot:
        return StateSnapshot(**self.model_dump(exclude={"type"}))


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str


class ShutdownMessage(BaseModel):
    type: Literal["shutdown"] = "shutdown"


ServerMessage = Annotated[
    Union[SnapshotMessage, ErrorMessage, ShutdownMessage],
    Field(discriminator="type"),
]
