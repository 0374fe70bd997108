"""
aegis.controller.provider_controller

Generic reconciler for the provider kinds. A provider being deleted first
deletes every Identity labelled with its name and keeps its own finalizer
until all of them are gone.
"""

import copy
import logging
from typing import Any, Callable, Dict, Optional

from ..exceptions import NotFoundError
from ..identity.token import ProjectedToken
from ..kube import ResourceStore
from ..resources import (
    CONDITION_AVAILABLE,
    IDENTITY,
    PROVIDER_FINALIZER,
    PROVIDER_LABEL,
    ResourceKind,
    add_finalizer,
    get_conditions,
    has_finalizer,
    is_being_deleted,
    name_of,
    namespace_of,
    remove_finalizer,
    set_condition,
)
from .result import Result

logger = logging.getLogger(__name__)

StatusHook = Callable[[Dict[str, Any]], None]


def kubernetes_issuer_status(token: ProjectedToken) -> StatusHook:
    """Build a hook publishing the cluster OIDC issuer in status.issuer."""

    def hook(provider: Dict[str, Any]) -> None:
        provider.setdefault("status", {})["issuer"] = token.issuer()

    return hook


class ProviderReconciler:
    """Lifecycle of one provider kind."""

    def __init__(
        self,
        store: ResourceStore,
        kind: ResourceKind,
        status_hook: Optional[StatusHook] = None,
        delete_requeue: float = 5.0,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Resource store
            kind: Provider kind handled by this instance
            status_hook: Fills kind-specific status fields before they are persisted
            delete_requeue: Seconds to wait while child Identities are still present
        """
        self.store = store
        self.kind = kind
        self.status_hook = status_hook
        self.delete_requeue = delete_requeue

    def reconcile(self, namespace: str, name: str) -> Result:
        logger.info("Reconciling %s %s/%s", self.kind.kind, namespace, name)
        try:
            provider = self.store.get(self.kind, namespace, name)
        except NotFoundError:
            logger.info("%s %s/%s not found, ignoring", self.kind.kind, namespace, name)
            return Result()

        if is_being_deleted(provider):
            return self._finalize(provider)

        if not get_conditions(provider):
            set_condition(
                provider,
                CONDITION_AVAILABLE,
                "Unknown",
                "Reconciling",
                "Starting reconciliation",
            )
            self.store.update_status(self.kind, provider)
            provider = self.store.get(self.kind, namespace, name)

        if add_finalizer(provider, PROVIDER_FINALIZER):
            logger.info("Adding finalizer to %s %s/%s", self.kind.kind, namespace, name)
            self.store.update(self.kind, provider)
            return Result(requeue=True)

        before = copy.deepcopy(provider.get("status"))
        if self.status_hook is not None:
            self.status_hook(provider)
        set_condition(
            provider,
            CONDITION_AVAILABLE,
            "True",
            "Reconciled",
            f"{self.kind.kind} reconciled",
        )
        if provider.get("status") != before:
            self.store.update_status(self.kind, provider)
        return Result()

    def _finalize(self, provider: Dict[str, Any]) -> Result:
        namespace = namespace_of(provider)
        name = name_of(provider)
        if not has_finalizer(provider, PROVIDER_FINALIZER):
            return Result()

        children = self.store.list(IDENTITY, namespace, labels={PROVIDER_LABEL: name})
        for child in children:
            logger.info(
                "Deleting Identity %s/%s of %s %s", namespace, name_of(child), self.kind.kind, name
            )
            try:
                self.store.delete(IDENTITY, namespace, name_of(child))
            except NotFoundError:
                pass

        remaining = []
        for child in children:
            try:
                self.store.get(IDENTITY, namespace, name_of(child))
            except NotFoundError:
                continue
            remaining.append(name_of(child))

        if remaining:
            logger.info(
                "%s %s/%s waits for Identities to be deleted: %s",
                self.kind.kind,
                namespace,
                name,
                ", ".join(remaining),
            )
            return Result(requeue_after=self.delete_requeue)

        remove_finalizer(provider, PROVIDER_FINALIZER)
        self.store.update(self.kind, provider)
        logger.info("Removed finalizer from %s %s/%s", self.kind.kind, namespace, name)
        return Result()
