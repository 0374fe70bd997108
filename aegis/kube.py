"""
aegis.kube

Resource store backed by the Kubernetes API.

Objects are exchanged as plain dictionaries. API errors are translated into
the operator's NotFoundError / AlreadyExistsError / ConflictError so callers
never depend on client library exception types.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from kubernetes import client, config, dynamic
from kubernetes.client import api_client

from .config import is_running_in_cluster
from .exceptions import AegisError, AlreadyExistsError, ConflictError, NotFoundError
from .resources import SERVICE_ACCOUNT, ResourceKind

logger = logging.getLogger(__name__)


def load_kube_config() -> None:
    """Load in-cluster configuration when running in a pod, kubeconfig otherwise."""
    if is_running_in_cluster():
        config.load_incluster_config()
    else:
        config.load_kube_config()


def _reason(e: client.exceptions.ApiException) -> str:
    try:
        return json.loads(e.body).get("reason", "")
    except (TypeError, ValueError, AttributeError):
        return ""


def _translate(
    e: client.exceptions.ApiException, kind: ResourceKind, namespace: str, name: str
) -> AegisError:
    target = f"{kind.kind} {namespace}/{name}"
    if e.status == 404:
        return NotFoundError(f"{target} not found")
    if e.status == 409:
        if _reason(e) == "AlreadyExists":
            return AlreadyExistsError(f"{target} already exists")
        return ConflictError(f"{target} was modified concurrently: {e.reason}")
    return AegisError(f"API request for {target} failed ({e.status}): {e.reason}")


class ResourceStore:
    """Typed CRUD access to custom and core resources."""

    def __init__(
        self,
        dyn_client: Optional[dynamic.DynamicClient] = None,
        core_client: Optional[client.CoreV1Api] = None,
    ):
        if dyn_client is None or core_client is None:
            shared = api_client.ApiClient()
            dyn_client = dyn_client or dynamic.DynamicClient(shared)
            core_client = core_client or client.CoreV1Api(shared)
        self._dyn = dyn_client
        self._core = core_client
        self._resources: Dict[ResourceKind, Any] = {}

    def _resource(self, kind: ResourceKind):
        if kind not in self._resources:
            self._resources[kind] = self._dyn.resources.get(
                api_version=kind.api_version, kind=kind.kind
            )
        return self._resources[kind]

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return self._resource(kind).get(name=name, namespace=namespace).to_dict()
        except client.exceptions.ApiException as e:
            raise _translate(e, kind, namespace, name) from e

    def list(
        self,
        kind: ResourceKind,
        namespace: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        selector = ",".join(f"{k}={v}" for k, v in (labels or {}).items())
        try:
            result = self._resource(kind).get(
                namespace=namespace, label_selector=selector or None
            )
        except client.exceptions.ApiException as e:
            raise _translate(e, kind, namespace, "*") from e
        return result.to_dict().get("items") or []

    def create(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        try:
            created = self._resource(kind).create(body=body, namespace=namespace)
        except client.exceptions.ApiException as e:
            raise _translate(e, kind, namespace, name) from e
        logger.info("Created %s %s/%s", kind.kind, namespace, name)
        return created.to_dict()

    def update(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        try:
            return self._resource(kind).replace(body=body, namespace=namespace).to_dict()
        except client.exceptions.ApiException as e:
            raise _translate(e, kind, namespace, name) from e

    def update_status(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        try:
            updated = self._resource(kind).status.replace(body=body, namespace=namespace)
        except client.exceptions.ApiException as e:
            raise _translate(e, kind, namespace, name) from e
        return updated.to_dict()

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        try:
            self._resource(kind).delete(name=name, namespace=namespace)
        except client.exceptions.ApiException as e:
            raise _translate(e, kind, namespace, name) from e
        logger.info("Requested deletion of %s %s/%s", kind.kind, namespace, name)

    def request_token(
        self,
        namespace: str,
        service_account: str,
        audiences: Sequence[str],
        expiration_seconds: int,
    ) -> str:
        """Issue a bound token for a service account through the TokenRequest API."""
        body = client.AuthenticationV1TokenRequest(
            spec=client.V1TokenRequestSpec(
                audiences=list(audiences), expiration_seconds=expiration_seconds
            )
        )
        try:
            response = self._core.create_namespaced_service_account_token(
                service_account, namespace, body
            )
        except client.exceptions.ApiException as e:
            raise _translate(e, SERVICE_ACCOUNT, namespace, service_account) from e
        return response.status.token
