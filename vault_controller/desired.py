"""Arbitrary declared API resources, kept equal to their configured state."""
from __future__ import annotations

import logging
from typing import List

from .config import DesiredStateConfig
from .errors import step
from .matchers import ExactMatcher
from .reconciler import DesiredResourceState, ReconcileOutcome, reconcile_state

logger = logging.getLogger(__name__)


def converge_desired_states(api, states: List[DesiredStateConfig]) -> List[ReconcileOutcome]:
    """Reconcile each declared state in order; the first error stops the rest."""
    outcomes: List[ReconcileOutcome] = []
    for entry in states:
        logger.debug("desired state %s -> %s", entry.name, entry.path)
        with step(f"desired state {entry.name}"):
            outcomes.append(reconcile_state(
                api, DesiredResourceState(path=entry.path, body=entry.state), ExactMatcher(),
            ))
    return outcomes
