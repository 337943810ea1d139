"""
Effect runners.

ThreadEffectRunner executes effects on Textual thread workers and posts the
resulting message back to the app. SyncEffectRunner executes them in order
on the calling thread, which is what headless commands and tests use.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable
from functools import partial
from typing import Protocol

from textual.app import App
from textual.message import Message

from gearbox.messages import Effect

logger = logging.getLogger(__name__)


class EffectRunner(Protocol):
    def run(self, effects: Iterable[Effect]) -> None:
        """Execute each effect and deliver its message."""
        ...


class RuntimeMessage(Message):
    """Carries a gearbox message into Textual's message queue."""

    def __init__(self, payload: object) -> None:
        self.payload = payload
        super().__init__()


class ThreadEffectRunner:
    """Runs every effect on its own thread worker."""

    def __init__(self, app: App, group: str = "effects") -> None:
        self._app = app
        self._group = group

    def run(self, effects: Iterable[Effect]) -> None:
        for effect in effects:
            self._app.run_worker(
                partial(self._execute, effect),
                group=self._group,
                thread=True,
                exit_on_error=False,
            )

    def _execute(self, effect: Effect) -> None:
        try:
            message = effect()
        except Exception:
            logger.exception("Effect %r failed", effect)
            return
        if message is not None:
            # post_message is thread-safe
            self._app.post_message(RuntimeMessage(message))


class SyncEffectRunner:
    """
    Runs effects one after another on the calling thread.

    `dispatch` receives every message and may schedule more effects through
    run(); they are appended to the same queue instead of recursing, so
    run() returns once nothing is left to do.
    """

    def __init__(self, dispatch: Callable[[object], None]) -> None:
        self._dispatch = dispatch
        self._pending: deque[Effect] = deque()
        self._draining = False

    def run(self, effects: Iterable[Effect]) -> None:
        self._pending.extend(effects)
        if self._draining:
            return
        self._draining = True
        try:
            while self._pending:
                message = self._pending.popleft()()
                if message is not None:
                    self._dispatch(message)
        finally:
            self._draining = False
