"""
Messages exchanged between background work and the UI loop.

An effect is a zero-argument callable that performs (possibly blocking)
work off the UI thread and returns one message, or None when there is
nothing to report. The runtime adapter decides where effects run.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from gearbox.providers import CheckUpdate, ProgressEvent


@dataclass(frozen=True)
class TaskUpdated:
    """A task published a progress event."""

    event: ProgressEvent


@dataclass(frozen=True)
class NoUpdate:
    """The bridge poll timed out without an event."""


@dataclass(frozen=True)
class CheckCompleted:
    """A diagnostic probe finished."""

    generation: int
    update: CheckUpdate


@dataclass(frozen=True)
class ContinueChecks:
    """The check chain may dispatch the probe at `next_index`."""

    generation: int
    next_index: int


Effect = Callable[[], object | None]


def batch(*groups: Iterable[Effect] | Effect | None) -> list[Effect]:
    """Flatten effects and effect lists into one list, dropping Nones."""
    effects: list[Effect] = []
    for group in groups:
        if group is None:
            continue
        if callable(group):
            effects.append(group)
        else:
            effects.extend(e for e in group if e is not None)
    return effects
