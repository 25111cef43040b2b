"""Pomodoro timer daemon serving local clients over a Unix socket."""

from .models import Command, Phase, StateSnapshot, TimerConfig
from .timer import CommandRefused, TimerStateMachine
from .registry import BroadcastHub, ClientConnection, ClientRegistry
from .daemon import Daemon
from .listener import DaemonAlreadyRunning

__version__ = "0.1.0"

__all__ = [
    "Command",
    "Phase",
    "StateSnapshot",
    "TimerConfig",
    "TimerStateMachine",
    "CommandRefused",
    "BroadcastHub",
    "ClientConnection",
    "ClientRegistry",
    "Daemon",
    "DaemonAlreadyRunning",
]
