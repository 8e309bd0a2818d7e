from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class CompensationStep:
    description: str
    action: Callable[[], object]


@dataclass
class Compensation:
    """Stack of inverse actions for durable state created during one run.

    Each step that creates a blob or row pushes the action that removes it.
    On a fatal failure ``unwind`` runs them newest-first; errors raised while
    cleaning up are logged and never mask the original failure.
    """

    steps: list[CompensationStep] = field(default_factory=list)

    def push(self, description: str, action: Callable[[], object]) -> None:
        self.steps.append(CompensationStep(description, action))

    def __len__(self) -> int:
        return len(self.steps)

    def clear(self) -> None:
        self.steps.clear()

    def discard(self, description: str) -> None:
        """Drop a pending step without running it."""
        self.steps = [step for step in self.steps if step.description != description]

    def unwind(self) -> list[str]:
        """Run every pending inverse action; return descriptions of those that failed."""
        failed: list[str] = []
        while self.steps:
            step = self.steps.pop()
            try:
                step.action()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Compensation step failed (%s): %s", step.description, exc)
                failed.append(step.description)
            else:
                logger.debug("Compensated: %s", step.description)
        return failed
