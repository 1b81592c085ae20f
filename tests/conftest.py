"""Shared in-memory fakes for the Vault API and the credentials store."""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple

import pytest

from vault_controller.errors import RecordAlreadyExists, RecordNotFound, TransportError
from vault_controller.store import RecoveryRecord


# ---------------------------------------------------------------------------
# Mock Vault API
# ---------------------------------------------------------------------------

class FakeVault:
    """Behaves like VaultAPI over a shared mutable state dict.

    Every request is appended to ``calls`` as (method, path, body).  Paths
    listed in ``state["fail"]`` raise TransportError.
    """

    def __init__(self, state: Optional[dict] = None):
        self.state = state if state is not None else make_vault_state()
        self.calls: List[Tuple[str, str, Optional[dict]]] = []
        self.token: Optional[str] = None

    # -- VaultAPI surface ---------------------------------------------------

    def set_token(self, token: str) -> None:
        self.token = token

    def read(self, path: str) -> Optional[dict]:
        return self.request("GET", path)

    def write(self, path: str, body: dict) -> Optional[dict]:
        return self.request("POST", path, body)

    def request(self, method: str, path: str, body: Optional[dict] = None) -> Optional[dict]:
        path = path.strip("/")
        self.calls.append((method, path, copy.deepcopy(body)))
        if (method, path) in self.state["fail"]:
            raise TransportError(f"{method} {path}: injected failure")

        handler = getattr(self, f"_{method.lower()}")
        return handler(path, body or {})

    # -- helpers ------------------------------------------------------------

    def writes(self, path_prefix: str = "") -> List[Tuple[str, Optional[dict]]]:
        return [(p, b) for m, p, b in self.calls if m == "POST" and p.startswith(path_prefix)]

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and p == path)

    def _seal_status(self) -> dict:
        return {
            "type": "shamir",
            "initialized": self.state["initialized"],
            "sealed": self.state["sealed"],
            "t": self.state["threshold"],
            "n": len(self.state["unseal_keys"]),
            "progress": len(self.state["progress"]),
        }

    def _get(self, path: str, body: dict) -> Optional[dict]:
        if path == "sys/init":
            return {"initialized": self.state["initialized"]}
        if path == "sys/seal-status":
            return self._seal_status()
        if path == "sys/auth":
            mounts = copy.deepcopy(self.state["auth_methods"])
            return dict(mounts, data=copy.deepcopy(mounts))
        if path in self.state["resources"]:
            data = copy.deepcopy(self.state["resources"][path])
            if path.endswith("/tune"):
                return dict(data, data=copy.deepcopy(data))
            return {"request_id": "mock-req", "lease_id": "", "data": data}
        return None

    def _post(self, path: str, body: dict) -> Optional[dict]:
        if path == "sys/init":
            if self.state["initialized"]:
                raise TransportError("POST sys/init: Vault is already initialized")
            n = body["secret_shares"]
            keys = [f"key-{i}" for i in range(1, n + 1)]
            self.state.update(
                initialized=True, sealed=True, unseal_keys=keys,
                threshold=body["secret_threshold"], progress=[],
            )
            return {"keys": keys, "keys_base64": keys, "root_token": "root-token"}
        if path == "sys/unseal":
            if body.get("reset"):
                self.state["progress"] = []
                return self._seal_status()
            if body.get("key") in self.state["unseal_keys"]:
                self.state["progress"].append(body["key"])
            if len(self.state["progress"]) >= self.state["threshold"]:
                self.state["sealed"] = False
                self.state["progress"] = []
            return self._seal_status()
        if path.startswith("sys/auth/") and not path.endswith("/tune"):
            mount = path[len("sys/auth/"):]
            self.state["auth_methods"][f"{mount}/"] = {
                "type": body.get("type"),
                "description": body.get("description", ""),
                "config": {},
            }
            self.state["resources"][f"{path}/tune"] = default_tuning(body.get("description", ""))
            return None
        if "/map/teams/" in path:
            map_path, team = path.rsplit("/", 1)
            self.state["resources"].setdefault(map_path, {})[team] = body["data"]["value"]
            return None
        if path.endswith("/tune"):
            self.state["resources"].setdefault(path, {}).update(copy.deepcopy(body))
            return None
        self.state["resources"][path] = copy.deepcopy(body)
        return None


def default_tuning(description: str = "") -> dict:
    """What Vault reports for a freshly enabled auth method's tuning."""
    return {
        "default_lease_ttl": 2764800,
        "max_lease_ttl": 2764800,
        "description": description,
        "force_no_cache": False,
        "token_type": "default-service",
        "listing_visibility": "",
        "audit_non_hmac_request_keys": [],
        "audit_non_hmac_response_keys": [],
    }


def make_vault_state(
    initialized: bool = False,
    sealed: bool = True,
    unseal_keys: Optional[List[str]] = None,
) -> dict:
    keys = list(unseal_keys or [])
    return {
        "initialized": initialized,
        "sealed": sealed,
        "unseal_keys": keys,
        "threshold": len(keys),
        "progress": [],
        "auth_methods": {
            "token/": {"type": "token", "description": "token based credentials", "config": {}},
        },
        "resources": {},
        "fail": set(),
    }


# ---------------------------------------------------------------------------
# Mock credentials store
# ---------------------------------------------------------------------------

class FakeStore:
    def __init__(self, records: Optional[Dict[str, RecoveryRecord]] = None):
        self.records: Dict[str, RecoveryRecord] = dict(records or {})
        self.calls: List[Tuple[str, str]] = []

    def get(self, name: str) -> RecoveryRecord:
        self.calls.append(("get", name))
        if name not in self.records:
            raise RecordNotFound(f"credentials secret \"{name}\" not found")
        return self.records[name]

    def create(self, name: str, record: RecoveryRecord) -> None:
        self.calls.append(("create", name))
        if name in self.records:
            raise RecordAlreadyExists(f"credentials secret \"{name}\" already exists")
        self.records[name] = record


# ---------------------------------------------------------------------------
# Test configuration
# ---------------------------------------------------------------------------

RECORD_NAME = "vault-creds"


def make_raw_config(
    num_keys: int = 5,
    github: Optional[dict] = None,
    desired_states: Optional[dict] = None,
) -> Dict[str, Any]:
    raw: Dict[str, Any] = {
        "vault": {"addr": "http://vault.example.com:8200"},
        "init": {
            "num_keys": num_keys,
            "creds_secret": {
                "name": RECORD_NAME,
                "namespace": "vault",
                "labels": {"app": "vault"},
            },
        },
    }
    if github is not None:
        raw["auth"] = {"github": github}
    if desired_states is not None:
        raw["desired_states"] = desired_states
    return raw


def github_block(**overrides: Any) -> dict:
    block = {
        "organization": "kscout",
        "base_url": "",
        "ttl": 3600,
        "max_ttl": 7200,
        "listing_visibility": "unauth",
        "team_policies": {"admins": "admin", "devs": "developer"},
    }
    block.update(overrides)
    return block


@pytest.fixture
def vault() -> FakeVault:
    return FakeVault()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
