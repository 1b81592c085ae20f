"""Error taxonomy for the controller.

Every failure the controller can hit is one of these.  Components raise;
only the command-line entry point decides what to do about it (log one
fatal line naming the step, then exit non-zero).  Nothing in here retries.
"""
from __future__ import annotations

import contextlib
import logging
from typing import Iterator, Optional


class ControllerError(Exception):
    """Base class.  ``step`` names the operation that failed."""

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class ConfigError(ControllerError):
    """Configuration missing or invalid."""


class TransportError(ControllerError):
    """A remote call failed or returned a non-2xx status."""


class DecodeError(ControllerError):
    """A response body was not in the expected shape."""


class InvariantViolation(ControllerError):
    """Remote and durable state disagree in a way that must not be auto-corrected."""


class ManualInterventionRequired(InvariantViolation):
    """Recovery material conflicts with the server; an operator has to decide.

    Raised when a recovery record exists for a server reporting itself
    uninitialized, when creating the record reports it already exists, or
    when an initialized server has no record to unseal with.
    """

    def __init__(self, message: str, record: str, step: Optional[str] = None):
        super().__init__(
            f"{message}; inspect credentials secret \"{record}\" and resolve manually",
            step=step,
        )
        self.record = record


# Durable Credential Store signals.  These are expected outcomes of get/create,
# not failures; the bootstrap state machine decides which of them are fatal.

class RecordNotFound(ControllerError):
    pass


class RecordAlreadyExists(ControllerError):
    pass


@contextlib.contextmanager
def step(name: str) -> Iterator[None]:
    """Tag any ControllerError escaping the block with ``name``.

    The innermost step wins, so nested steps report the most precise
    operation.
    """
    try:
        yield
    except ControllerError as e:
        if e.step is None:
            e.step = name
        raise


def fatal(logger: logging.Logger, err: ControllerError) -> int:
    """Log the failed step and its error; return the process exit status."""
    logger.critical("%s failed: %s", err.step or "controller", err)
    return 1
