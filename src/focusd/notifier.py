# focusd/notifier.py
import asyncio
import logging
import random
from typing import Optional

from .models import Phase

logger = logging.getLogger(__name__)

SUMMARY = "focusd"


class Notifier:
    """Desktop notifications on natural phase expiry via notify-send.

    Runs the command as a detached subprocess so the timer never waits on it.
    """

    def __init__(self, enabled: bool = True, break_suggestions: Optional[list[str]] = None,
                 command: str = "notify-send"):
        self.enabled = enabled
        self.break_suggestions = break_suggestions or []
        self.command = command
        self._tasks: set[asyncio.Task] = set()

    def message_for(self, finished: Phase, next_phase: Phase) -> str:
        if finished is Phase.WORK:
            kind = "long" if next_phase is Phase.LONG_BREAK else "short"
            message = f"Session complete, take a {kind} break!"
            if self.break_suggestions:
                message += f"\n\n{random.choice(self.break_suggestions)}"
            return message
        return "Break is over, time to focus!"

    def phase_ended(self, finished: Phase, next_phase: Phase):
        """Timer callback; schedules the notification on the running loop."""
        self._schedule(self.message_for(finished, next_phase))

    def postpone_ended(self, phase: Phase):
        kind = "long" if phase is Phase.LONG_BREAK else "short"
        self._schedule(f"Postpone is over, back to your {kind} break!")

    def _schedule(self, body: str):
        if not self.enabled:
            return

        task = asyncio.get_running_loop().create_task(self._send(body))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, body: str):
        try:
            process = await asyncio.create_subprocess_exec(
                self.command, SUMMARY, body,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            returncode = await process.wait()
            if returncode != 0:
                logger.warning(f"{self.command} exited with {returncode}")
        except FileNotFoundError:
            logger.warning(f"{self.command} not found, disabling notifications")
            self.enabled = False
        except OSError as e:
            logger.error(f"Failed to send notification: {e}")

    async def aclose(self):
        """Wait for in-flight notifications."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
