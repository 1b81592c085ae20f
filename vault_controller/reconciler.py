"""Read actual state, compare to desired state, write only on mismatch."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .errors import DecodeError, step
from .matchers import Matcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DesiredResourceState:
    path: str
    body: Dict[str, Any]


@dataclass(frozen=True)
class ReconcileOutcome:
    path: str
    changed: bool


def match(api, path: str, desired: Dict[str, Any], matcher: Matcher) -> bool:
    """Read ``path`` and ask ``matcher`` whether it satisfies ``desired``.

    Raises TransportError if the read fails and DecodeError if the matcher
    cannot interpret the response.
    """
    with step(f"read {path}"):
        actual = api.read(path)
        try:
            return matcher.match(desired, actual)
        except DecodeError as e:
            raise DecodeError(f"{path}: {e}") from e


def reconcile(api, path: str, desired: Dict[str, Any], matcher: Matcher) -> ReconcileOutcome:
    """Make ``path`` hold ``desired``.

    Read-only when the resource already matches.  Otherwise the desired
    document is written whole; the server's copy is replaced, not merged.
    """
    if match(api, path, desired, matcher):
        logger.info("[ok] %s already satisfied", path)
        return ReconcileOutcome(path=path, changed=False)

    with step(f"write {path}"):
        api.write(path, desired)
    logger.info("[change] wrote %s", path)
    return ReconcileOutcome(path=path, changed=True)


def reconcile_state(api, state: DesiredResourceState, matcher: Matcher) -> ReconcileOutcome:
    return reconcile(api, state.path, state.body, matcher)
