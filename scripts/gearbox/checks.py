"""
Sequential check runner.

Runs a list of independent, potentially slow probes one at a time while
reporting each result as soon as it is ready. The chain is an explicit
state machine: advance() turns a ChainState into the effects for the next
probe plus the state after it, without touching the UI runtime.

For each index the runner emits two effects:
  - the probe itself, producing CheckCompleted
  - a continuation producing ContinueChecks(index + 1)
The continuation waits for its probe to finish (bounded by probe_timeout)
before it reports, so the next probe is only dispatched after the previous
one completed, even when the runtime runs effects on parallel threads.

Every restart bumps the generation; messages from an older generation are
ignored so a manual refresh never runs two chains side by side.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, replace

from gearbox.errors import CollaboratorUnavailable
from gearbox.messages import CheckCompleted, ContinueChecks, Effect
from gearbox.probes import CHECKING, Probe, warning
from gearbox.providers import CheckStatus, CheckUpdate, HealthCheck

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 30.0


@dataclass(frozen=True)
class ChainState:
    generation: int = 0
    next_index: int = 0


class SequentialCheckRunner:
    """Self-scheduling chain of probes with at most one probe in flight."""

    def __init__(self, probes: Sequence[Probe], probe_timeout: float = DEFAULT_PROBE_TIMEOUT) -> None:
        self._probes = list(probes)
        self._probe_timeout = probe_timeout
        self._state = ChainState()

    def __len__(self) -> int:
        return len(self._probes)

    @property
    def probes(self) -> list[Probe]:
        return list(self._probes)

    @property
    def state(self) -> ChainState:
        return self._state

    @property
    def generation(self) -> int:
        return self._state.generation

    @property
    def dispatched_all(self) -> bool:
        return self._state.next_index >= len(self._probes)

    def advance(self, state: ChainState) -> tuple[list[Effect], ChainState]:
        """Effects for the probe at state.next_index, and the following state."""
        index = state.next_index
        if index >= len(self._probes):
            return [], state
        done = threading.Event()
        effects = [
            self._probe_effect(state.generation, index, done),
            self._continuation(state.generation, index, done),
        ]
        return effects, replace(state, next_index=index + 1)

    def run_from(self, index: int) -> list[Effect]:
        """Dispatch the probe at `index`. Empty once the chain is exhausted."""
        effects, self._state = self.advance(replace(self._state, next_index=index))
        return effects

    def restart(self) -> list[Effect]:
        """Start a fresh chain from the first probe."""
        self._state = ChainState(generation=self._state.generation + 1)
        logger.debug("Starting check chain generation %d", self._state.generation)
        return self.run_from(0)

    def is_current(self, generation: int) -> bool:
        return generation == self._state.generation

    def handle_continue(self, message: ContinueChecks) -> list[Effect]:
        if not self.is_current(message.generation):
            return []
        effects = self.run_from(message.next_index)
        if not effects:
            logger.debug("Check chain generation %d finished", message.generation)
        return effects

    def _probe_effect(self, generation: int, index: int, done: threading.Event) -> Effect:
        probe = self._probes[index]

        def run_probe() -> CheckCompleted:
            try:
                result = probe.run()
            except CollaboratorUnavailable as exc:
                logger.info("Probe %s skipped: %s", probe.name, exc)
                result = warning(f"{probe.name} check unavailable", (str(exc),))
            except Exception as exc:
                # a broken probe degrades to a warning, the chain keeps going
                logger.warning("Probe %s failed: %s", probe.name, exc, exc_info=True)
                result = warning(f"{probe.name} check unavailable", (str(exc),))
            finally:
                done.set()
            return CheckCompleted(generation, replace(result, check_index=index))

        return run_probe

    def _continuation(self, generation: int, index: int, done: threading.Event) -> Effect:
        name = self._probes[index].name

        def continue_chain() -> ContinueChecks:
            if not done.wait(self._probe_timeout):
                logger.warning("Probe %s still running after %.0fs, moving on", name, self._probe_timeout)
            return ContinueChecks(generation, index + 1)

        return continue_chain


class CheckBoard:
    """Health check rows: static system facts followed by one row per probe."""

    def __init__(self, probes: Sequence[Probe], static: Sequence[HealthCheck] = ()) -> None:
        self._probes = list(probes)
        self.static_checks = list(static)
        self.probe_checks = [
            HealthCheck(
                name=p.name,
                category=p.category,
                status=CheckStatus.PENDING,
                message=p.pending_message,
                critical=p.critical,
            )
            for p in self._probes
        ]

    def all_checks(self) -> list[HealthCheck]:
        return self.static_checks + self.probe_checks

    def reset(self) -> None:
        """Put every probe row back into the 'checking' placeholder state."""
        for check in self.probe_checks:
            check.status = CheckStatus.PENDING
            check.message = CHECKING
            check.details = []
            check.suggestions = []

    def apply(self, update: CheckUpdate) -> bool:
        if not 0 <= update.check_index < len(self.probe_checks):
            logger.warning("Ignoring result for unknown check index %d", update.check_index)
            return False
        check = self.probe_checks[update.check_index]
        check.status = update.status
        check.message = update.message
        check.details = list(update.details)
        check.suggestions = list(update.suggestions)
        return True

    def pending(self) -> int:
        return sum(1 for c in self.probe_checks if c.status == CheckStatus.PENDING)

    def summary(self) -> dict[CheckStatus, int]:
        counts = {status: 0 for status in CheckStatus}
        for check in self.all_checks():
            counts[check.status] += 1
        return counts
