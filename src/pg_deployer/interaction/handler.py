"""User interaction handlers for operator prompts."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from rich.console import Console

logger = logging.getLogger(__name__)

AFFIRMATIVE_ANSWERS = ("y", "yes")


@dataclass
class InteractionRequest:
    """A yes/no question put to the operator before a mutating operation."""

    question: str
    context: Optional[str] = None
    default: Optional[str] = None

    def format_prompt(self) -> str:
        """Format the request as a user-friendly prompt."""
        lines = [f"\n⚠️ {self.question}"]
        if self.context:
            lines.append(f"   {self.context}")
        default_hint = f" (default: {self.default})" if self.default else ""
        lines.append(f"   [y/n]{default_hint}")
        return "\n".join(lines)


@dataclass
class InteractionResponse:
    """Operator's answer to an interaction request."""

    value: str
    cancelled: bool = False

    @property
    def affirmative(self) -> bool:
        return not self.cancelled and self.value.strip().lower() in AFFIRMATIVE_ANSWERS

    @classmethod
    def cancelled_response(cls) -> "InteractionResponse":
        return cls(value="", cancelled=True)


class UserInteractionHandler(ABC):
    """Abstract base class for handling operator interactions."""

    @abstractmethod
    def ask(self, request: InteractionRequest) -> InteractionResponse:
        """Present a request to the operator and return the answer."""

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """Show a message that needs no answer.

        Args:
            message: The message to display
            level: Severity level (info, warning, error, success)
        """


class CLIInteractionHandler(UserInteractionHandler):
    """Terminal handler rendering prompts with rich."""

    _STYLES = {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "green",
    }

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        self.console.print(request.format_prompt(), markup=False)
        try:
            return self._handle_confirm(request)
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n   (cancelled)")
            return InteractionResponse.cancelled_response()

    def _handle_confirm(self, request: InteractionRequest) -> InteractionResponse:
        default = request.default or "n"
        while True:
            user_input = self.console.input(
                f"   Continue? [y/n] (default: {default}): ", markup=False
            ).strip().lower()
            if not user_input:
                user_input = default
            if user_input in ("y", "yes"):
                return InteractionResponse(value="yes")
            if user_input in ("n", "no"):
                return InteractionResponse(value="no")
            self.console.print("   Please answer y or n")

    def notify(self, message: str, level: str = "info") -> None:
        style = self._STYLES.get(level, "")
        self.console.print(message, style=style, markup=False, highlight=False)


class AutoResponseHandler(UserInteractionHandler):
    """
    Automatic response handler for tests and --yes mode.
    Answers every confirmation the same way and records what it was asked.
    """

    def __init__(self, always_confirm: bool = True) -> None:
        self.always_confirm = always_confirm
        self.requests: List[InteractionRequest] = []
        self.notifications: List[tuple[str, str]] = []

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        logger.info("Auto-responding to: %s", request.question[:60])
        self.requests.append(request)
        return InteractionResponse(value="yes" if self.always_confirm else "no")

    def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append((level, message))
        logger.info("[%s] %s", level, message)


def confirm(
    handler: UserInteractionHandler,
    question: str,
    *,
    context: Optional[str] = None,
    default: str = "n",
) -> bool:
    """Ask one yes/no question; only an explicit yes counts."""
    response = handler.ask(InteractionRequest(question=question, context=context, default=default))
    return response.affirmative
