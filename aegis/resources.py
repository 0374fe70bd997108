"""
aegis.resources

Resource kinds handled by the operator plus helpers for the finalizer,
label, condition and owner-reference bookkeeping done on their
dictionary representation.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

GROUP = "aegis.aegisproxy.io"
VERSION = "v1"

IDENTITY_FINALIZER = "identity.aegis.aegisproxy.io"
PROVIDER_FINALIZER = "idprovider.aegis.aegisproxy.io"
PROVIDER_LABEL = "aegis.aegisproxy.io/identity.provider"

CONDITION_AVAILABLE = "Available"


@dataclass(frozen=True)
class ResourceKind:
    """A namespaced Kubernetes resource type."""

    kind: str
    plural: str
    group: str = GROUP
    version: str = VERSION

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


IDENTITY = ResourceKind("Identity", "identities")
VAULT_PROVIDER = ResourceKind("HashicorpVaultProvider", "hashicorpvaultproviders")
AZURE_PROVIDER = ResourceKind("AzureProvider", "azureproviders")
AWS_PROVIDER = ResourceKind("AWSProvider", "awsproviders")
KUBERNETES_PROVIDER = ResourceKind("KubernetesProvider", "kubernetesproviders")

PROVIDER_KINDS = (VAULT_PROVIDER, AZURE_PROVIDER, AWS_PROVIDER, KUBERNETES_PROVIDER)

SERVICE_ACCOUNT = ResourceKind("ServiceAccount", "serviceaccounts", group="")
ROLE = ResourceKind("Role", "roles", group="rbac.authorization.k8s.io")
ROLE_BINDING = ResourceKind("RoleBinding", "rolebindings", group="rbac.authorization.k8s.io")


def new_object(
    kind: ResourceKind,
    name: str,
    namespace: str,
    labels: Optional[Dict[str, str]] = None,
    **fields: Any,
) -> Dict[str, Any]:
    """Build the dictionary body of a new object of the given kind."""
    metadata: Dict[str, Any] = {"name": name, "namespace": namespace}
    if labels:
        metadata["labels"] = dict(labels)
    body = {"apiVersion": kind.api_version, "kind": kind.kind, "metadata": metadata}
    body.update(fields)
    return body


def name_of(obj: Dict[str, Any]) -> str:
    return obj["metadata"]["name"]


def namespace_of(obj: Dict[str, Any]) -> str:
    return obj["metadata"].get("namespace", "")


def is_being_deleted(obj: Dict[str, Any]) -> bool:
    return bool(obj.get("metadata", {}).get("deletionTimestamp"))


def has_finalizer(obj: Dict[str, Any], finalizer: str) -> bool:
    return finalizer in (obj.get("metadata", {}).get("finalizers") or [])


def add_finalizer(obj: Dict[str, Any], finalizer: str) -> bool:
    """Add a finalizer in place. Returns True if the object changed."""
    finalizers = obj["metadata"].setdefault("finalizers", [])
    if finalizer in finalizers:
        return False
    finalizers.append(finalizer)
    return True


def remove_finalizer(obj: Dict[str, Any], finalizer: str) -> bool:
    """Remove a finalizer in place. Returns True if the object changed."""
    finalizers = obj["metadata"].get("finalizers") or []
    if finalizer not in finalizers:
        return False
    obj["metadata"]["finalizers"] = [f for f in finalizers if f != finalizer]
    return True


def set_label(obj: Dict[str, Any], key: str, value: str) -> bool:
    """Set a label in place. Returns True if the object changed."""
    labels = obj["metadata"].get("labels") or {}
    if labels.get(key) == value:
        return False
    labels[key] = value
    obj["metadata"]["labels"] = labels
    return True


def get_conditions(obj: Dict[str, Any]) -> List[Dict[str, Any]]:
    return (obj.get("status") or {}).get("conditions") or []


def find_condition(obj: Dict[str, Any], condition_type: str) -> Optional[Dict[str, Any]]:
    for condition in get_conditions(obj):
        if condition.get("type") == condition_type:
            return condition
    return None


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(
    obj: Dict[str, Any],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
) -> None:
    """
    Set a status condition in place, keyed by type.

    The transition time only moves when the condition status changes and
    existing conditions keep their position.
    """
    obj_status = obj.get("status")
    if obj_status is None:
        obj_status = {}
        obj["status"] = obj_status
    conditions = obj_status.setdefault("conditions", [])
    generation = obj.get("metadata", {}).get("generation")

    for condition in conditions:
        if condition.get("type") != condition_type:
            continue
        if condition.get("status") != status:
            condition["status"] = status
            condition["lastTransitionTime"] = _now()
        condition["reason"] = reason
        condition["message"] = message
        if generation is not None:
            condition["observedGeneration"] = generation
        return

    condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": _now(),
    }
    if generation is not None:
        condition["observedGeneration"] = generation
    conditions.append(condition)


def owner_reference(owner: Dict[str, Any], controller: bool = True) -> Dict[str, Any]:
    """Build an owner reference pointing at the given object."""
    return {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": owner["metadata"]["name"],
        "uid": owner["metadata"]["uid"],
        "controller": controller,
        "blockOwnerDeletion": True,
    }


def service_account_subject(namespace: str, name: str) -> str:
    """Return the token subject of a service account."""
    return f"system:serviceaccount:{namespace}:{name}"
