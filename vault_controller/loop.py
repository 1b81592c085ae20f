"""The control loop.

One tick runs bootstrap to completion, then the GitHub auth flow and any
declared states.  The first tick fires immediately; later ticks wait
``interval`` seconds.  Cancellation is only noticed while waiting, so a tick
that has started always finishes (or fails) first.

The wait is injectable so tests can drive the loop with a synthetic clock::

    loop = ControlLoop(tick, interval=15, cancel=event, wait=fake_clock.wait)
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .auth import GitHubAuthFlow
from .bootstrap import Bootstrapper
from .config import Config
from .desired import converge_desired_states

logger = logging.getLogger(__name__)

# wait(timeout) -> True when cancelled during (or before) the wait
WaitFn = Callable[[float], bool]


class Controller:
    """Everything one tick does, in dependency order."""

    def __init__(self, api, store, cfg: Config):
        self.cfg = cfg
        self.api = api
        self.bootstrapper = Bootstrapper(api, store, cfg.creds_secret.name, cfg.num_keys)
        self.auth_flow = GitHubAuthFlow(api, cfg.github) if cfg.github else None

    def tick(self) -> None:
        self.bootstrapper.run()
        if self.auth_flow is not None:
            self.auth_flow.run()
        if self.cfg.desired_states:
            converge_desired_states(self.api, self.cfg.desired_states)


class ControlLoop:
    def __init__(
        self,
        tick: Callable[[], None],
        interval: float,
        cancel: Optional[threading.Event] = None,
        wait: Optional[WaitFn] = None,
    ):
        self.tick = tick
        self.interval = interval
        self.cancel = cancel if cancel is not None else threading.Event()
        self.wait = wait if wait is not None else self.cancel.wait
        self.ticks = 0

    def run(self) -> None:
        """Run until cancelled.  Errors from a tick propagate to the caller."""
        delay = 0.0
        while True:
            if self.wait(delay) or self.cancel.is_set():
                logger.info("cancelled, stopping control loop")
                return

            logger.debug("running control loop")
            self.tick()
            self.ticks += 1

            delay = self.interval
            logger.debug("ran control loop, sleeping for %gs", delay)
