"""Rotation events and receivers."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

EVENT_BEGIN_ROTATION = "begin-rotation"
EVENT_BEGIN_PASSWORD_ROTATION = "begin-password-rotation"
EVENT_END_PASSWORD_ROTATION = "end-password-rotation"
EVENT_BEGIN_PASSWORD_VERIFICATION = "begin-password-verification"
EVENT_END_PASSWORD_VERIFICATION = "end-password-verification"
EVENT_NEW_PASSWORD_IS_CURRENT = "new-password-is-current"
EVENT_END_ROTATION = "end-rotation"
EVENT_BEGIN_PASSWORD_ROLLBACK = "begin-password-rollback"
EVENT_ERROR = "error"


@dataclass
class RotationEvent:
    """An important event during the four-step rotation process."""
    name: str
    step: str
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[BaseException] = None  # set only when name is EVENT_ERROR


class EventReceiver:
    """
    Receives events from a Rotator.

    receive() runs on the rotation thread; if it blocks, rotation blocks.
    """

    def receive(self, event: RotationEvent) -> None:
        raise NotImplementedError


class NullEventReceiver(EventReceiver):
    """Default receiver. Ignores all events."""

    def receive(self, event: RotationEvent) -> None:
        pass


class LoggingEventReceiver(EventReceiver):
    """Writes every event as one log line."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def receive(self, event: RotationEvent) -> None:
        if event.error is not None:
            logger.error(f"event {event.name} step={event.step}: {event.error}")
        else:
            logger.log(self.level, f"event {event.name} step={event.step}")
