"""Durable storage for Vault recovery material.

The key shares and root token returned by ``sys/init`` are written exactly
once to a Kubernetes Secret and only ever read back afterwards.  The store
never replaces or deletes a record.

Secret keys:
    Keys       – JSON-encoded list of key shares, in the order Vault returned them
    RootToken  – the initial root token
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from .errors import DecodeError, RecordAlreadyExists, RecordNotFound, TransportError

logger = logging.getLogger(__name__)

KEYS_FIELD = "Keys"
ROOT_TOKEN_FIELD = "RootToken"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "vault-controller"


@dataclass(frozen=True)
class RecoveryRecord:
    key_shares: Tuple[str, ...]
    root_token: str

    def __repr__(self) -> str:
        return f"RecoveryRecord(key_shares=<{len(self.key_shares)} shares>, root_token=<redacted>)"


def encode_record(record: RecoveryRecord) -> Dict[str, str]:
    """Secret ``data`` for a record (values base64-encoded, as the API expects)."""
    plain = {
        KEYS_FIELD: json.dumps(list(record.key_shares)),
        ROOT_TOKEN_FIELD: record.root_token,
    }
    return {k: base64.b64encode(v.encode()).decode() for k, v in plain.items()}


def decode_record(name: str, data: Optional[Dict[str, str]]) -> RecoveryRecord:
    data = data or {}
    missing = [k for k in (KEYS_FIELD, ROOT_TOKEN_FIELD) if k not in data]
    if missing:
        raise DecodeError(f"credentials secret \"{name}\" is missing {', '.join(missing)}")

    try:
        keys = json.loads(base64.b64decode(data[KEYS_FIELD]).decode())
        root_token = base64.b64decode(data[ROOT_TOKEN_FIELD]).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"credentials secret \"{name}\" cannot be decoded: {e}")

    if not isinstance(keys, list) or not keys or not all(isinstance(k, str) for k in keys):
        raise DecodeError(f"credentials secret \"{name}\" {KEYS_FIELD} must be a non-empty list of strings")
    if not root_token:
        raise DecodeError(f"credentials secret \"{name}\" has an empty {ROOT_TOKEN_FIELD}")
    return RecoveryRecord(key_shares=tuple(keys), root_token=root_token)


class KubeSecretStore:
    """Create-once, read-many records backed by namespaced Secrets."""

    def __init__(self, api: client.CoreV1Api, namespace: str, labels: Optional[Dict[str, str]] = None):
        self._api = api
        self.namespace = namespace
        self.labels = dict(labels or {})

    def get(self, name: str) -> RecoveryRecord:
        """Read a record.  Raises RecordNotFound if there is none."""
        try:
            secret = self._api.read_namespaced_secret(name=name, namespace=self.namespace)
        except ApiException as e:
            if e.status == 404:
                raise RecordNotFound(f"credentials secret \"{self.namespace}/{name}\" not found")
            raise TransportError(
                f"failed to get credentials secret \"{self.namespace}/{name}\": {e.status} {e.reason}"
            )
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(
                f"failed to get credentials secret \"{self.namespace}/{name}\": {e}"
            ) from e
        return decode_record(name, secret.data)

    def create(self, name: str, record: RecoveryRecord) -> None:
        """Create a record if absent.  Raises RecordAlreadyExists otherwise."""
        labels = dict(self.labels)
        labels.setdefault(MANAGED_BY_LABEL, MANAGED_BY)
        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(name=name, namespace=self.namespace, labels=labels),
            type="Opaque",
            data=encode_record(record),
        )
        try:
            self._api.create_namespaced_secret(namespace=self.namespace, body=body)
        except ApiException as e:
            if e.status == 409:
                raise RecordAlreadyExists(
                    f"credentials secret \"{self.namespace}/{name}\" already exists"
                )
            raise TransportError(
                f"failed to create credentials secret \"{self.namespace}/{name}\": {e.status} {e.reason}"
            )
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(
                f"failed to create credentials secret \"{self.namespace}/{name}\": {e}"
            ) from e
        logger.info("created credentials secret %s/%s", self.namespace, name)
