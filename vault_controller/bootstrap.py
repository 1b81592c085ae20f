"""Bring Vault from uninitialized to unsealed.

Performs the following steps, in order, every time it runs:

1. Ask Vault whether it is initialized.  An initialized server skips
   straight to step 4, so re-running after a crash never initializes twice.
2. Before initializing, make sure no recovery record exists.  Finding one
   for an uninitialized server is fatal: the record may be the only copy of
   a previous server's keys and is never overwritten or discarded.
3. Initialize with N shares and a threshold of N, then create the recovery
   record.  The create refuses to replace an existing record.
4. Read the record back from the store (never from memory) and authenticate
   with its root token.
5. If sealed, reset any unseal in progress and submit every share in stored
   order.  Still sealed after the last share is fatal.

Losing the process between the init call and the create call leaves a server
nobody can unseal.  That server holds no secrets yet, so this is accepted.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import (
    DecodeError,
    InvariantViolation,
    ManualInterventionRequired,
    RecordAlreadyExists,
    RecordNotFound,
    step,
)
from .store import RecoveryRecord

logger = logging.getLogger(__name__)


class BootstrapState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    RECOVERY_PERSISTED = "recovery-persisted"
    SEALED = "sealed"
    UNSEALED = "unsealed"


@dataclass(frozen=True)
class SealState:
    initialized: bool
    sealed: bool


def _bool_field(body: Optional[Dict[str, Any]], field: str, path: str) -> bool:
    value = body.get(field) if isinstance(body, dict) else None
    if not isinstance(value, bool):
        raise DecodeError(f"{path} response has no boolean \"{field}\"")
    return value


class Bootstrapper:
    """Runs the init → persist → unseal sequence against one server.

    ``api`` is a VaultAPI, ``store`` a KubeSecretStore (or anything with the
    same ``get``/``create``), ``record_name`` the fixed name of the record.
    """

    def __init__(self, api, store, record_name: str, num_keys: int):
        self.api = api
        self.store = store
        self.record_name = record_name
        self.num_keys = num_keys
        self.state: Optional[BootstrapState] = None

    def _enter(self, state: BootstrapState) -> None:
        if state != self.state:
            logger.debug("bootstrap state %s -> %s",
                         self.state.value if self.state else "start", state.value)
        self.state = state

    # -- remote status ------------------------------------------------------

    def init_status(self) -> bool:
        with step("get Vault init status"):
            return _bool_field(self.api.request("GET", "sys/init"), "initialized", "sys/init")

    def seal_status(self) -> SealState:
        with step("get Vault seal status"):
            body = self.api.request("GET", "sys/seal-status")
            return SealState(
                initialized=_bool_field(body, "initialized", "sys/seal-status"),
                sealed=_bool_field(body, "sealed", "sys/seal-status"),
            )

    # -- transitions --------------------------------------------------------

    def ensure_no_record(self) -> None:
        """Guard the destructive init call: only "not found" lets it proceed."""
        with step("check for existing credentials secret"):
            try:
                self.store.get(self.record_name)
            except RecordNotFound:
                return
            raise ManualInterventionRequired(
                "Vault reports uninitialized but a credentials secret already exists",
                record=self.record_name,
            )

    def initialize(self) -> None:
        self._enter(BootstrapState.INITIALIZING)
        logger.info("initializing Vault with %d key shares", self.num_keys)

        with step("initialize Vault"):
            resp = self.api.request("POST", "sys/init", {
                "secret_shares": self.num_keys,
                "secret_threshold": self.num_keys,
            }) or {}
            keys = resp.get("keys")
            root_token = resp.get("root_token")
            if not isinstance(keys, list) or not keys or not isinstance(root_token, str):
                raise DecodeError("sys/init response has no keys or root_token")

        logger.info("initialized Vault; saving credentials")
        with step("save credentials secret"):
            try:
                self.store.create(
                    self.record_name,
                    RecoveryRecord(key_shares=tuple(keys), root_token=root_token),
                )
            except RecordAlreadyExists:
                raise ManualInterventionRequired(
                    "credentials secret was created by someone else while initializing",
                    record=self.record_name,
                )
        self._enter(BootstrapState.RECOVERY_PERSISTED)

    def read_record(self) -> RecoveryRecord:
        with step("read credentials secret"):
            try:
                return self.store.get(self.record_name)
            except RecordNotFound:
                raise ManualInterventionRequired(
                    "Vault is initialized but no credentials secret exists",
                    record=self.record_name,
                )

    def unseal(self, record: RecoveryRecord) -> SealState:
        status = self.seal_status()
        if not status.sealed:
            self._enter(BootstrapState.UNSEALED)
            logger.debug("vault already unsealed")
            return status

        self._enter(BootstrapState.SEALED)
        logger.info("unsealing Vault with %d key shares", len(record.key_shares))
        with step("unseal Vault"):
            self.api.request("POST", "sys/unseal", {"reset": True})
            resp: Optional[Dict[str, Any]] = None
            for i, key in enumerate(record.key_shares, 1):
                logger.debug("submitting key share %d/%d", i, len(record.key_shares))
                resp = self.api.request("POST", "sys/unseal", {"key": key})

            if _bool_field(resp, "sealed", "sys/unseal"):
                raise InvariantViolation(
                    f"Vault still sealed after submitting all {len(record.key_shares)} "
                    f"stored key shares; stored share count does not match the server"
                )

        self._enter(BootstrapState.UNSEALED)
        logger.info("[change] unsealed Vault")
        return SealState(initialized=True, sealed=False)

    def run(self) -> SealState:
        if self.init_status():
            logger.debug("vault already initialized")
        else:
            self._enter(BootstrapState.UNINITIALIZED)
            self.ensure_no_record()
            self.initialize()

        record = self.read_record()
        self.api.set_token(record.root_token)
        return self.unseal(record)
