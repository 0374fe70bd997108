"""
aegis.controller.identity_controller

Reconciles Identity resources: back-end identity creation and deletion
through the resolved provider, plus the service account and RBAC objects the
workload runs with.
"""

import logging
from typing import Any, Dict, Optional

from ..exceptions import AlreadyExistsError, NotFoundError
from ..identity.factory import ProviderResolver
from ..kube import ResourceStore
from ..resources import (
    CONDITION_AVAILABLE,
    GROUP,
    IDENTITY,
    IDENTITY_FINALIZER,
    PROVIDER_LABEL,
    ROLE,
    ROLE_BINDING,
    SERVICE_ACCOUNT,
    ResourceKind,
    add_finalizer,
    get_conditions,
    has_finalizer,
    is_being_deleted,
    name_of,
    namespace_of,
    new_object,
    owner_reference,
    remove_finalizer,
    set_condition,
    set_label,
)
from .result import Result

logger = logging.getLogger(__name__)

POLICY_VIEWER_ROLE = "ingresspolicy-viewer-role"
DEFAULT_SERVICE_ACCOUNT = "default"


def _provider_name(identity: Dict[str, Any]) -> str:
    return (identity.get("spec") or {}).get("provider", "")


def policy_viewer_binding_name(service_account: str) -> str:
    return f"{service_account}-{POLICY_VIEWER_ROLE}"


class IdentityReconciler:
    """Drives one Identity from creation to deletion."""

    kind = IDENTITY

    def __init__(self, store: ResourceStore, resolver: ProviderResolver):
        self.store = store
        self.resolver = resolver

    def reconcile(self, namespace: str, name: str) -> Result:
        logger.info("Reconciling Identity %s/%s", namespace, name)
        try:
            identity = self.store.get(IDENTITY, namespace, name)
        except NotFoundError:
            logger.info("Identity %s/%s not found, ignoring", namespace, name)
            return Result()

        if is_being_deleted(identity):
            return self._finalize(identity)

        if not get_conditions(identity):
            set_condition(
                identity,
                CONDITION_AVAILABLE,
                "Unknown",
                "Reconciling",
                "Starting reconciliation",
            )
            self.store.update_status(IDENTITY, identity)
            identity = self.store.get(IDENTITY, namespace, name)

        # Nothing is created in the back-end before the finalizer is persisted
        changed = add_finalizer(identity, IDENTITY_FINALIZER)
        changed = set_label(identity, PROVIDER_LABEL, _provider_name(identity)) or changed
        if changed:
            logger.info("Adding finalizer to Identity %s/%s", namespace, name)
            self.store.update(IDENTITY, identity)
            return Result(requeue=True)

        if not (identity.get("status") or {}).get("provider"):
            identity = self._create(identity)

        service_account = self._ensure_service_account(identity)
        self._ensure_policy_viewer_role(namespace)
        self._ensure_policy_viewer_binding(namespace, name, owner=service_account)
        self._ensure_policy_viewer_binding(namespace, DEFAULT_SERVICE_ACCOUNT)
        return Result()

    def _create(self, identity: Dict[str, Any]) -> Dict[str, Any]:
        namespace = namespace_of(identity)
        name = name_of(identity)
        adapter = self.resolver.resolve(_provider_name(identity), namespace)

        logger.info(
            "Creating identity %s/%s with provider %s", namespace, name, adapter.get_name()
        )
        metadata = adapter.create_identity(identity)

        set_condition(
            identity,
            CONDITION_AVAILABLE,
            "True",
            "Reconciled",
            f"Identity created with provider {adapter.get_name()}",
        )
        identity["status"]["provider"] = adapter.get_name()
        identity["status"]["metadata"] = metadata
        return self.store.update_status(IDENTITY, identity)

    def _finalize(self, identity: Dict[str, Any]) -> Result:
        namespace = namespace_of(identity)
        name = name_of(identity)
        if not has_finalizer(identity, IDENTITY_FINALIZER):
            return Result()

        adapter = self.resolver.resolve(_provider_name(identity), namespace)
        logger.info(
            "Deleting identity %s/%s from provider %s", namespace, name, adapter.get_name()
        )
        adapter.delete_identity(identity)

        remove_finalizer(identity, IDENTITY_FINALIZER)
        self.store.update(IDENTITY, identity)
        logger.info("Removed finalizer from Identity %s/%s", namespace, name)
        return Result()

    def _ensure(self, kind: ResourceKind, body: Dict[str, Any]) -> Dict[str, Any]:
        """Return the named object, creating it from body when it does not exist."""
        namespace = namespace_of(body)
        name = name_of(body)
        try:
            return self.store.get(kind, namespace, name)
        except NotFoundError:
            pass
        try:
            return self.store.create(kind, body)
        except AlreadyExistsError:
            return self.store.get(kind, namespace, name)

    def _ensure_service_account(self, identity: Dict[str, Any]) -> Dict[str, Any]:
        body = new_object(SERVICE_ACCOUNT, name_of(identity), namespace_of(identity))
        body["metadata"]["ownerReferences"] = [owner_reference(identity)]
        return self._ensure(SERVICE_ACCOUNT, body)

    def _ensure_policy_viewer_role(self, namespace: str) -> None:
        body = new_object(
            ROLE,
            POLICY_VIEWER_ROLE,
            namespace,
            rules=[
                {
                    "apiGroups": [GROUP],
                    "resources": ["ingresspolicies"],
                    "verbs": ["get", "list", "watch"],
                }
            ],
        )
        self._ensure(ROLE, body)

    def _ensure_policy_viewer_binding(
        self, namespace: str, service_account: str, owner: Optional[Dict[str, Any]] = None
    ) -> None:
        body = new_object(
            ROLE_BINDING,
            policy_viewer_binding_name(service_account),
            namespace,
            roleRef={
                "apiGroup": ROLE.group,
                "kind": ROLE.kind,
                "name": POLICY_VIEWER_ROLE,
            },
            subjects=[
                {
                    "kind": SERVICE_ACCOUNT.kind,
                    "name": service_account,
                    "namespace": namespace,
                }
            ],
        )
        if owner is not None:
            body["metadata"]["ownerReferences"] = [owner_reference(owner, controller=False)]
        self._ensure(ROLE_BINDING, body)
