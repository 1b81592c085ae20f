"""GitHub authentication backend convergence.

Four steps, strictly in order, each one logged as changed or already
satisfied.  Any error stops the remaining steps for this run.

1. enable   – ``sys/auth/<mount>`` exists (presence check, no comparison)
2. tune     – ``sys/auth/<mount>/tune`` listing visibility (field subset)
3. configure – ``auth/<mount>/config`` (exact)
4. teams    – ``auth/<mount>/map/teams`` (exact over the whole map); on any
   mismatch every declared team is rewritten, one write per team
"""
from __future__ import annotations

import logging
from typing import Dict, List

from .api import unwrap
from .config import GitHubAuthConfig
from .errors import DecodeError, step
from .matchers import ExactMatcher, FieldSubsetMatcher
from .reconciler import ReconcileOutcome, match, reconcile

logger = logging.getLogger(__name__)

GITHUB_MOUNT = "github"
GITHUB_DESCRIPTION = "GitHub authentication"


class GitHubAuthFlow:
    def __init__(self, api, cfg: GitHubAuthConfig, mount: str = GITHUB_MOUNT):
        self.api = api
        self.cfg = cfg
        self.mount = mount.strip("/")

    def enable(self) -> ReconcileOutcome:
        path = f"sys/auth/{self.mount}"
        with step("list auth methods"):
            auths = unwrap(self.api.request("GET", "sys/auth"))
            if not isinstance(auths, dict):
                raise DecodeError("sys/auth response is not a mapping of mounts")

        if f"{self.mount}/" in auths:
            logger.info("[ok] auth method %s/ already enabled", self.mount)
            return ReconcileOutcome(path=path, changed=False)

        with step(f"enable auth method {self.mount}/"):
            self.api.request("POST", path, {
                "type": "github",
                "description": GITHUB_DESCRIPTION,
            })
        logger.info("[change] enabled github auth at %s/", self.mount)
        return ReconcileOutcome(path=path, changed=True)

    def tune(self) -> ReconcileOutcome:
        return reconcile(self.api, f"sys/auth/{self.mount}/tune",
                         self.cfg.tuning(), FieldSubsetMatcher())

    def configure(self) -> ReconcileOutcome:
        return reconcile(self.api, f"auth/{self.mount}/config",
                         self.cfg.backend_config(), ExactMatcher())

    def map_teams(self) -> ReconcileOutcome:
        path = f"auth/{self.mount}/map/teams"
        teams: Dict[str, str] = self.cfg.team_policies
        if not teams:
            logger.info("[ok] %s already satisfied (no team policies declared)", path)
            return ReconcileOutcome(path=path, changed=False)
        if match(self.api, path, teams, ExactMatcher()):
            logger.info("[ok] %s already satisfied", path)
            return ReconcileOutcome(path=path, changed=False)

        # No diff: every declared team is written again.
        for team, policy in teams.items():
            with step(f"write {path}/{team}"):
                self.api.request("POST", f"{path}/{team}", {"data": {"value": policy}})
            logger.info("[change] mapped team %s to policy %s", team, policy)
        return ReconcileOutcome(path=path, changed=True)

    def run(self) -> List[ReconcileOutcome]:
        return [
            self.enable(),
            self.tune(),
            self.configure(),
            self.map_teams(),
        ]
