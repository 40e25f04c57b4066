"""
Submit-and-converge loop for one simulated postback action.

The remote page sometimes needs an extra round-trip (for example to populate
a dependent dropdown) before the requested table renders. The engine keeps
re-submitting the same logical action against the freshly merged state until
the reply is terminal, up to ``max_cycles`` attempts.
"""

import os
from collections import namedtuple
from datetime import datetime
from enum import Enum

from crawler_errors import CancellationError, ExhaustedError
from delta_response import parse_response
from form_state import merge

MAX_CYCLES = int(os.environ.get('CEI_MAX_CYCLES', 10))


def log(msg):
    print(f'[{datetime.now()}] [postback] {msg}', flush=True)


class EngineStatus(Enum):
    IDLE = 'idle'
    AWAITING_RESPONSE = 'awaiting_response'
    CONVERGED = 'converged'


PostbackResult = namedtuple('PostbackResult', ['state', 'outcome', 'response'])


class PostbackEngine:
    """
    Args:
        transport: callable taking the form data dict and returning the raw
            response text.
        max_cycles: hard cap on submits per ``run``.
        cancel_event: optional ``threading.Event``; once set, no further
            cycle is started.
    """

    def __init__(self, transport, max_cycles=MAX_CYCLES, cancel_event=None):
        if max_cycles < 1:
            raise ValueError('max_cycles must be at least 1')
        self.transport = transport
        self.max_cycles = max_cycles
        self.cancel_event = cancel_event
        self.status = EngineStatus.IDLE
        self.submits = 0

    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            self.status = EngineStatus.IDLE
            raise CancellationError('Postback cancelled by caller')

    def run(self, state, build_body, overrides, rule):
        """
        Submit ``overrides`` on top of ``state`` until a terminal outcome.

        Args:
            state: current field set.
            build_body: ``(state, overrides) -> form data`` for this action.
            overrides: the action's fields, re-applied on every cycle.
            rule: the domain's CompletionRule.

        Returns:
            PostbackResult(state, outcome, response) where ``state`` already
            includes every field update received, and ``response`` is the
            last ParsedResponse.

        Raises:
            ExhaustedError when ``max_cycles`` replies were all Pending.
            ProtocolError / SessionExpiredError / CancellationError unchanged.
        """
        for cycle in range(1, self.max_cycles + 1):
            self._check_cancelled()

            body = build_body(state, overrides)
            self.status = EngineStatus.AWAITING_RESPONSE
            self.submits += 1
            log(f'Cycle {cycle}/{self.max_cycles}: submitting {body.get("__EVENTTARGET") or "postback"}')
            try:
                response = parse_response(self.transport(body), rule)
            except Exception:
                self.status = EngineStatus.IDLE
                raise
            state = merge(state, response.updates)

            if response.outcome.terminal:
                self.status = EngineStatus.CONVERGED
                log(f'Converged after {cycle} cycle(s): {response.outcome.kind.value}')
                return PostbackResult(state, response.outcome, response)

            self.status = EngineStatus.IDLE
            log(f'Cycle {cycle}: results not rendered yet, resubmitting')

        raise ExhaustedError(self.max_cycles)


def run_postback(state, build_body, transport, overrides, rule, max_cycles=MAX_CYCLES, cancel_event=None):
    """Functional shortcut for a single PostbackEngine run."""
    engine = PostbackEngine(transport, max_cycles=max_cycles, cancel_event=cancel_event)
    return engine.run(state, build_body, overrides, rule)
