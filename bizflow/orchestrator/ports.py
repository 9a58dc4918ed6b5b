"""Capabilities the orchestrator needs from its host (UI, CLI, tests)"""

from typing import Callable, Protocol

from bizflow.utils.logging import get_logger

logger = get_logger(__name__)

# Returns True when the user confirmed the destructive action
ConfirmationPort = Callable[[str], bool]


class NotificationPort(Protocol):
    """User-visible notifications (toasts in a UI, lines in a CLI)"""

    def success(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingNotifier:
    """Notification port that writes to the structured log"""

    def success(self, message: str) -> None:
        logger.info(message, notification="success")

    def warning(self, message: str) -> None:
        logger.warning(message, notification="warning")

    def error(self, message: str) -> None:
        logger.error(message, notification="error")


def deny_all(prompt: str) -> bool:
    """Confirmation port used when no interactive host is available"""
    logger.warning("Destructive action declined: no confirmation available", prompt=prompt)
    return False
