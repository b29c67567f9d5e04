"""Confirmation providers used to gate destructive steps.

Steps never prompt directly; they ask a provider. The CLI plugs in
ClickConfirmation, ``--yes`` plugs in AutoConfirm(True), and tests use
ScriptedConfirmation to replay a fixed sequence of answers.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Protocol, Sequence, Union

import click

# Answers offered for each VM during the start step.
START = "yes"
SKIP = "skip"
ABORT = "abort"
START_CHOICES = (START, SKIP, ABORT)


class ConfirmationProvider(Protocol):
    def confirm(self, prompt: str, default: bool = False) -> bool: ...

    def choose(self, prompt: str, choices: Sequence[str], default: str) -> str: ...


class ClickConfirmation:
    """Interactive prompts on the terminal."""

    def confirm(self, prompt: str, default: bool = False) -> bool:
        return click.confirm(prompt, default=default)

    def choose(self, prompt: str, choices: Sequence[str], default: str) -> str:
        return click.prompt(
            prompt,
            type=click.Choice(list(choices), case_sensitive=False),
            default=default,
        ).lower()


class AutoConfirm:
    """Answers every prompt the same way (yes: first choice, no: last choice)."""

    def __init__(self, answer: bool = True):
        self.answer = answer
        self.prompts: list[str] = []

    def confirm(self, prompt: str, default: bool = False) -> bool:
        self.prompts.append(prompt)
        return self.answer

    def choose(self, prompt: str, choices: Sequence[str], default: str) -> str:
        self.prompts.append(prompt)
        return choices[0] if self.answer else choices[-1]


class ScriptedConfirmation:
    """Replays answers in order; bools for confirm(), strings for choose()."""

    def __init__(self, answers: Iterable[Union[bool, str]]):
        self._answers = deque(answers)
        self.prompts: list[str] = []

    def _next(self, prompt: str):
        self.prompts.append(prompt)
        if not self._answers:
            raise AssertionError(f"No scripted answer left for prompt: {prompt}")
        return self._answers.popleft()

    def confirm(self, prompt: str, default: bool = False) -> bool:
        answer = self._next(prompt)
        if not isinstance(answer, bool):
            raise AssertionError(f"Expected a yes/no answer for '{prompt}', got {answer!r}")
        return answer

    def choose(self, prompt: str, choices: Sequence[str], default: str) -> str:
        answer = self._next(prompt)
        if answer not in choices:
            raise AssertionError(f"Answer {answer!r} is not one of {list(choices)} for '{prompt}'")
        return answer

    @property
    def remaining(self) -> int:
        return len(self._answers)
