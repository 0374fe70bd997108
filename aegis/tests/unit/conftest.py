"""
Shared fixtures for the Aegis unit tests.

FakeStore reproduces the resource-store semantics the controllers rely on:
NotFound/AlreadyExists errors, resourceVersion conflicts, label selection and
the finalizer / deletionTimestamp protocol.
"""

import copy
import itertools
from typing import Any, Dict, List, Optional, Sequence, Tuple

import jwt
import pytest

from aegis.config import OperatorConfig
from aegis.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    ProviderNotFoundError,
)
from aegis.identity.provider import IdentityProvider
from aegis.resources import IDENTITY, ResourceKind, new_object


# ============================================================================
# Fake resource store
# ============================================================================


class FakeStore:
    """In-memory stand-in for aegis.kube.ResourceStore."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, str, str]] = []
        self.token_requests: List[Dict[str, Any]] = []
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)

    @staticmethod
    def _key(kind: ResourceKind, namespace: str, name: str) -> Tuple[str, str, str]:
        return (kind.kind, namespace, name)

    def _stamp(self, obj: Dict[str, Any]) -> None:
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def add(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        """Seed an object without recording a call."""
        obj = copy.deepcopy(body)
        obj.setdefault("apiVersion", kind.api_version)
        obj.setdefault("kind", kind.kind)
        obj["metadata"].setdefault("uid", f"uid-{next(self._uids)}")
        obj["metadata"].setdefault("generation", 1)
        self._stamp(obj)
        self.objects[self._key(kind, obj["metadata"]["namespace"], obj["metadata"]["name"])] = obj
        return copy.deepcopy(obj)

    def exists(self, kind: ResourceKind, namespace: str, name: str) -> bool:
        return self._key(kind, namespace, name) in self.objects

    def peek(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        return self.objects[self._key(kind, namespace, name)]

    def count(self, op: str, kind: Optional[ResourceKind] = None) -> int:
        return len(
            [c for c in self.calls if c[0] == op and (kind is None or c[1] == kind.kind)]
        )

    def _current(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return self.objects[self._key(kind, namespace, name)]
        except KeyError:
            raise NotFoundError(f"{kind.kind} {namespace}/{name} not found")

    def _check_version(self, current: Dict[str, Any], body: Dict[str, Any]) -> None:
        version = body["metadata"].get("resourceVersion")
        if version is not None and version != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"{current['metadata']['name']} was modified concurrently")

    def _maybe_remove(self, kind: ResourceKind, obj: Dict[str, Any]) -> None:
        metadata = obj["metadata"]
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            del self.objects[self._key(kind, metadata["namespace"], metadata["name"])]

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        self.calls.append(("get", kind.kind, namespace, name))
        return copy.deepcopy(self._current(kind, namespace, name))

    def list(
        self,
        kind: ResourceKind,
        namespace: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        self.calls.append(("list", kind.kind, namespace, ""))
        result = []
        for (k, ns, _), obj in sorted(self.objects.items()):
            if k != kind.kind or ns != namespace:
                continue
            obj_labels = obj["metadata"].get("labels") or {}
            if all(obj_labels.get(key) == value for key, value in (labels or {}).items()):
                result.append(copy.deepcopy(obj))
        return result

    def create(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        self.calls.append(("create", kind.kind, namespace, name))
        if self.exists(kind, namespace, name):
            raise AlreadyExistsError(f"{kind.kind} {namespace}/{name} already exists")
        obj = copy.deepcopy(body)
        obj["metadata"]["uid"] = f"uid-{next(self._uids)}"
        self._stamp(obj)
        self.objects[self._key(kind, namespace, name)] = obj
        return copy.deepcopy(obj)

    def update(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        self.calls.append(("update", kind.kind, namespace, name))
        current = self._current(kind, namespace, name)
        self._check_version(current, body)
        obj = copy.deepcopy(body)
        # status and deletion state are not writable through update
        obj["status"] = copy.deepcopy(current.get("status"))
        if obj["status"] is None:
            del obj["status"]
        obj["metadata"]["deletionTimestamp"] = current["metadata"].get("deletionTimestamp")
        obj["metadata"]["uid"] = current["metadata"]["uid"]
        self._stamp(obj)
        self.objects[self._key(kind, namespace, name)] = obj
        self._maybe_remove(kind, obj)
        return copy.deepcopy(obj)

    def update_status(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        self.calls.append(("update_status", kind.kind, namespace, name))
        current = self._current(kind, namespace, name)
        self._check_version(current, body)
        current["status"] = copy.deepcopy(body.get("status"))
        self._stamp(current)
        return copy.deepcopy(current)

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        self.calls.append(("delete", kind.kind, namespace, name))
        current = self._current(kind, namespace, name)
        if current["metadata"].get("deletionTimestamp"):
            return
        current["metadata"]["deletionTimestamp"] = "2026-01-01T00:00:00Z"
        self._stamp(current)
        self._maybe_remove(kind, current)

    def request_token(
        self,
        namespace: str,
        service_account: str,
        audiences: Sequence[str],
        expiration_seconds: int,
    ) -> str:
        self.token_requests.append(
            {
                "namespace": namespace,
                "service_account": service_account,
                "audiences": list(audiences),
                "expiration_seconds": expiration_seconds,
            }
        )
        return f"token-{service_account}"


# ============================================================================
# Recording identity provider
# ============================================================================


class RecordingProvider(IdentityProvider):
    """IdentityProvider that records calls and can be told to fail."""

    def __init__(self, name: str = "kubernetes", metadata: Optional[Dict[str, str]] = None):
        self.name = name
        self.metadata = metadata if metadata is not None else {"aegis.identity.id": "id-1"}
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.error: Optional[Exception] = None

    def get_name(self) -> str:
        return self.name

    def create_identity(self, identity: Dict[str, Any]) -> Dict[str, str]:
        if self.error is not None:
            raise self.error
        self.created.append(identity["metadata"]["name"])
        return dict(self.metadata)

    def get_identity(self, identity: Dict[str, Any]) -> bool:
        return identity["metadata"]["name"] in self.created

    def delete_identity(self, identity: Dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.deleted.append(identity["metadata"]["name"])


class StubResolver:
    """Resolver returning one adapter for every known provider name."""

    def __init__(self, adapter: IdentityProvider, known: Sequence[str] = ("my-provider",)):
        self.adapter = adapter
        self.known = set(known)
        self.resolved: List[Tuple[str, str]] = []

    def resolve(self, provider_name: str, namespace: str) -> IdentityProvider:
        self.resolved.append((provider_name, namespace))
        if provider_name not in self.known:
            raise ProviderNotFoundError(f"Identity provider '{provider_name}' not found")
        return self.adapter


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def recording_provider():
    return RecordingProvider()


@pytest.fixture
def identity_body():
    """Factory for Identity bodies."""

    def make(name: str = "svc-a", namespace: str = "apps", provider: str = "my-provider", **extra):
        body = new_object(IDENTITY, name, namespace, spec={"provider": provider})
        body.update(extra)
        return body

    return make


@pytest.fixture
def make_token(tmp_path):
    """Write an unsigned JWT with the given claims and return its path."""

    def make(claims: Dict[str, Any], filename: str = "token") -> str:
        path = tmp_path / filename
        path.write_text(jwt.encode(claims, "secret", algorithm="HS256"))
        return str(path)

    return make


@pytest.fixture
def config(make_token):
    issuer = "https://oidc.example.com/cluster"
    return OperatorConfig(
        vault_token_path=make_token({"iss": issuer, "sub": "system:serviceaccount:aegis:op"}, "vault"),
        azure_token_path=make_token({"iss": issuer, "sub": "op"}, "azure"),
        aws_token_path=make_token({"iss": issuer, "sub": "op"}, "aws"),
        sa_token_path=make_token({"iss": issuer, "sub": "op"}, "sa"),
    )
