"""Desired-vs-actual comparison strategies.

A matcher answers one question: does the document read back from the API
already satisfy the desired document?  ``match(desired, actual)`` is the only
contract the reconciler relies on.

``actual`` is the decoded response body, or None when the resource does not
exist.  Absent resources never match.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .api import unwrap
from .errors import DecodeError

logger = logging.getLogger(__name__)


def _payload(actual: Any) -> Optional[Dict[str, Any]]:
    if actual is None:
        return None
    payload = unwrap(actual)
    if not isinstance(payload, dict):
        raise DecodeError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def diff(desired: Dict[str, Any], actual: Dict[str, Any], keys: Iterable[str]) -> List[str]:
    """Human-readable ``key: actual -> desired`` lines for mismatched keys."""
    lines: List[str] = []
    for key in keys:
        if actual.get(key) != desired.get(key):
            lines.append(f"{key}: {actual.get(key)!r} -> {desired.get(key)!r}")
    return lines


class Matcher:
    """Base class for comparison strategies."""

    def match(self, desired: Dict[str, Any], actual: Any) -> bool:
        raise NotImplementedError


class ExactMatcher(Matcher):
    """The actual payload must equal the desired document, key for key."""

    def match(self, desired: Dict[str, Any], actual: Any) -> bool:
        payload = _payload(actual)
        if payload is None:
            logger.debug("resource absent")
            return False
        if payload == desired:
            return True
        keys = sorted(set(desired) | set(payload))
        logger.debug("differs:\n%s", "\n".join(diff(desired, payload, keys)))
        return False


class FieldSubsetMatcher(Matcher):
    """Only the fields named in the desired document are compared.

    Anything else the server reports is managed elsewhere or defaulted by
    the server, and is ignored.
    """

    def match(self, desired: Dict[str, Any], actual: Any) -> bool:
        payload = _payload(actual)
        if payload is None:
            logger.debug("resource absent")
            return False
        lines = diff(desired, payload, desired.keys())
        if lines:
            logger.debug("differs:\n%s", "\n".join(lines))
            return False
        return True
