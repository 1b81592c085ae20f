"""Controller configuration.

Configuration is a YAML file passed with ``--config``, or else the first of
``./vault-controller.yaml`` and ``/etc/vault-controller/vault-controller.yaml``
that exists.

The ``vault.addr`` value can be overridden with the
``VAULT_CONTROLLER_VAULT_ADDR`` environment variable.  It is validated after
the override is applied, so a file without an address is fine as long as the
environment provides one.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

CONFIG_FILE = "vault-controller.yaml"
SEARCH_PATHS = [Path(CONFIG_FILE), Path("/etc/vault-controller") / CONFIG_FILE]

ADDR_ENV = "VAULT_CONTROLLER_VAULT_ADDR"

DEFAULT_VAULT_ADDR = "http://localhost:8200"
DEFAULT_NUM_KEYS = 5
DEFAULT_INTERVAL = 15.0
DEFAULT_LISTING_VISIBILITY = "unauth"


def deep_get(d: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Retrieve a nested value using a dotted path string."""
    cur: Any = d
    for p in path.split("."):
        if not isinstance(cur, dict) or p not in cur:
            return default
        cur = cur[p]
    return cur


def find_config(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit:
        return Path(explicit)
    for candidate in SEARCH_PATHS:
        if candidate.exists():
            return candidate
    return None


def load_raw(path: Optional[Path]) -> Dict[str, Any]:
    if path is None or not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"cannot parse {path}: {e}", step="load configuration")
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping", step="load configuration")
    return raw


@dataclass(frozen=True)
class CredsSecretConfig:
    """Kubernetes secret holding the recovery record."""

    name: str
    namespace: str
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GitHubAuthConfig:
    organization: str
    base_url: str = ""
    ttl: int = 0
    max_ttl: int = 0
    listing_visibility: str = DEFAULT_LISTING_VISIBILITY
    team_policies: Dict[str, str] = field(default_factory=dict)

    def backend_config(self) -> Dict[str, Any]:
        """Desired document for ``auth/github/config``."""
        return {
            "organization": self.organization,
            "base_url": self.base_url,
            "ttl": self.ttl,
            "max_ttl": self.max_ttl,
        }

    def tuning(self) -> Dict[str, Any]:
        """The one tuning field the controller manages."""
        return {"listing_visibility": self.listing_visibility}


@dataclass(frozen=True)
class DesiredStateConfig:
    name: str
    path: str
    state: Dict[str, Any]


@dataclass(frozen=True)
class Config:
    vault_addr: str
    num_keys: int
    creds_secret: CredsSecretConfig
    github: Optional[GitHubAuthConfig] = None
    desired_states: List[DesiredStateConfig] = field(default_factory=list)
    interval: float = DEFAULT_INTERVAL


def _str_or_default(section: Dict[str, Any], key: str, default: str) -> str:
    """YAML null (`key:` with no value) means the default, not the string "None"."""
    value = section.get(key)
    return default if value is None else str(value)


def _int(raw: Dict[str, Any], keypath: str, default: int, problems: List[str]) -> int:
    val = deep_get(raw, keypath, default)
    if isinstance(val, bool) or not isinstance(val, int):
        problems.append(f"{keypath} must be an integer (got {val!r})")
        return default
    return val


def _github(raw: Dict[str, Any], problems: List[str]) -> Optional[GitHubAuthConfig]:
    gh = deep_get(raw, "auth.github")
    if gh is None:
        return None
    if not isinstance(gh, dict):
        problems.append("auth.github must be a mapping")
        return None

    organization = gh.get("organization")
    if not organization:
        problems.append("auth.github.organization")

    teams = gh.get("team_policies") or {}
    if not isinstance(teams, dict):
        problems.append("auth.github.team_policies must be a mapping of team to policy")
        teams = {}

    return GitHubAuthConfig(
        organization=str(organization or ""),
        base_url=str(gh.get("base_url") or ""),
        ttl=_int(raw, "auth.github.ttl", 0, problems),
        max_ttl=_int(raw, "auth.github.max_ttl", 0, problems),
        listing_visibility=_str_or_default(gh, "listing_visibility", DEFAULT_LISTING_VISIBILITY),
        team_policies={str(k): str(v) for k, v in teams.items()},
    )


def _desired_states(raw: Dict[str, Any], problems: List[str]) -> List[DesiredStateConfig]:
    entries = raw.get("desired_states") or {}
    if not isinstance(entries, dict):
        problems.append("desired_states must be a mapping of id to {path, state}")
        return []

    states: List[DesiredStateConfig] = []
    for name, entry in entries.items():
        path = entry.get("path") if isinstance(entry, dict) else None
        state = entry.get("state") if isinstance(entry, dict) else None
        if not path or not isinstance(state, dict):
            problems.append(f"desired_states.{name} needs a path and a state mapping")
            continue
        states.append(DesiredStateConfig(name=str(name), path=str(path).strip("/"), state=state))
    return states


def parse_config(raw: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Config:
    """Build a Config from a raw mapping, applying environment overrides.

    All problems are collected and reported together in one ConfigError.
    """
    environ = os.environ if environ is None else environ
    problems: List[str] = []

    vault_addr = environ.get(ADDR_ENV) or deep_get(raw, "vault.addr", DEFAULT_VAULT_ADDR)
    if not vault_addr:
        problems.append("vault.addr")

    num_keys = _int(raw, "init.num_keys", DEFAULT_NUM_KEYS, problems)
    if num_keys < 1:
        problems.append(f"init.num_keys must be at least 1 (got {num_keys})")

    secret_name = deep_get(raw, "init.creds_secret.name")
    secret_namespace = deep_get(raw, "init.creds_secret.namespace")
    for keypath, val in [
        ("init.creds_secret.name", secret_name),
        ("init.creds_secret.namespace", secret_namespace),
    ]:
        if not val:
            problems.append(keypath)
    labels = deep_get(raw, "init.creds_secret.labels") or {}
    if not isinstance(labels, dict):
        problems.append("init.creds_secret.labels must be a mapping")
        labels = {}

    github = _github(raw, problems)
    desired_states = _desired_states(raw, problems)

    interval = deep_get(raw, "loop.interval", DEFAULT_INTERVAL)
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        problems.append(f"loop.interval must be a positive number (got {interval!r})")
        interval = DEFAULT_INTERVAL

    if problems:
        raise ConfigError(
            f"invalid configuration: {', '.join(problems)}", step="load configuration",
        )

    return Config(
        vault_addr=str(vault_addr).rstrip("/"),
        num_keys=num_keys,
        creds_secret=CredsSecretConfig(
            name=str(secret_name),
            namespace=str(secret_namespace),
            labels={str(k): str(v) for k, v in labels.items()},
        ),
        github=github,
        desired_states=desired_states,
        interval=float(interval),
    )


def load_config(explicit: Optional[str] = None) -> Config:
    path = find_config(explicit)
    if explicit and not path.exists():
        raise ConfigError(f"config file {path} does not exist", step="load configuration")
    return parse_config(load_raw(path))
