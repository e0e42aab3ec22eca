from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from promptpilot.app.orchestration.schema import OrchestrationResult


class LLMOutputError(Exception):
    """The model answered, but not with a usable JSON object."""


class DecisionContractError(LLMOutputError):
    """Router response failed the decision schema."""


class ActionExecutionError(Exception):
    """Raised by the executor for an action it cannot run."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(f"{action}: {message}")
        self.action = action


class OrchestrationAbortedError(Exception):
    """
    The run stopped early because the provider quota is exhausted.

    ``result`` holds every step recorded before the abort (including the failed
    one); the causing error is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        result: "OrchestrationResult",
        remaining_cooldown: int = 0,
    ) -> None:
        super().__init__(message)
        self.result = result
        self.remaining_cooldown = remaining_cooldown

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__


__all__ = [
    "LLMOutputError",
    "DecisionContractError",
    "ActionExecutionError",
    "OrchestrationAbortedError",
]
