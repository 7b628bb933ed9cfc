"""
Contract for the user-facing notification collaborator.

The client never renders anything itself: toasts, confirmations and text
prompts are delegated to whatever object the host application supplies.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    def info(self, message: str) -> None:
        """Show an informational toast."""

    def error(self, message: str) -> None:
        """Show an error toast."""

    def confirm(self, title: str, message: str) -> bool:
        """Ask the user to confirm a destructive action."""

    def prompt(self, title: str, message: str) -> str | None:
        """Ask the user for a line of text. None means cancelled."""


class LoggingNotifier:
    """Headless notifier that writes toasts to the log.

    Confirmations are always declined and prompts cancelled, so nothing
    destructive can happen without an interactive collaborator.
    """

    def info(self, message: str) -> None:
        logger.info(f"[notify] {message}")

    def error(self, message: str) -> None:
        logger.error(f"[notify] {message}")

    def confirm(self, title: str, message: str) -> bool:
        logger.warning(f"Declining confirmation '{title}' (no interactive notifier)")
        return False

    def prompt(self, title: str, message: str) -> str | None:
        logger.warning(f"Cancelling prompt '{title}' (no interactive notifier)")
        return None
