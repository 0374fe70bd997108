"""
aegis.identity.factory

Resolves a bare provider name to an identity provider instance.
"""

import logging
from typing import Any, Callable, Dict, Tuple

from ..config import OperatorConfig
from ..exceptions import NotFoundError, ProviderNotFoundError
from ..kube import ResourceStore
from ..resources import (
    AWS_PROVIDER,
    AZURE_PROVIDER,
    KUBERNETES_PROVIDER,
    PROVIDER_KINDS,
    VAULT_PROVIDER,
    ResourceKind,
)
from .aws_provider import AWSIdentityProvider
from .azure_provider import AzureIdentityProvider
from .kubernetes_provider import KubernetesIdentityProvider
from .provider import IdentityProvider
from .token import ProjectedToken
from .vault_provider import VaultIdentityProvider

logger = logging.getLogger(__name__)


def _spec(provider: Dict[str, Any]) -> Dict[str, Any]:
    return provider.get("spec") or {}


class ProviderResolver:
    """
    Finds the provider object behind a bare name and builds its adapter.

    Provider kinds are probed in PROVIDER_KINDS order; the first kind with an
    object of that name in the namespace wins.
    """

    def __init__(self, store: ResourceStore, config: OperatorConfig):
        self.store = store
        self.config = config
        self._builders: Dict[ResourceKind, Callable[[Dict[str, Any]], IdentityProvider]] = {
            VAULT_PROVIDER: self._vault,
            AZURE_PROVIDER: self._azure,
            AWS_PROVIDER: self._aws,
            KUBERNETES_PROVIDER: self._kubernetes,
        }

    def _vault(self, provider: Dict[str, Any]) -> IdentityProvider:
        return VaultIdentityProvider(
            vault_address=_spec(provider).get("vaultAddress", ""),
            token=ProjectedToken(self.config.vault_token_path),
        )

    def _azure(self, provider: Dict[str, Any]) -> IdentityProvider:
        spec = _spec(provider)
        return AzureIdentityProvider(
            tenant_id=spec.get("tenantID", ""),
            client_id=spec.get("clientID", ""),
            token=ProjectedToken(self.config.azure_token_path),
        )

    def _aws(self, provider: Dict[str, Any]) -> IdentityProvider:
        spec = _spec(provider)
        return AWSIdentityProvider(
            region=spec.get("region", ""),
            role_arn=spec.get("roleARN", ""),
            identity_pool_id=spec.get("identityPoolID", ""),
            tokens=self.store,
            token=ProjectedToken(self.config.aws_token_path),
        )

    def _kubernetes(self, provider: Dict[str, Any]) -> IdentityProvider:
        return KubernetesIdentityProvider()

    def probe(self, provider_name: str, namespace: str) -> Tuple[ResourceKind, Dict[str, Any]]:
        """
        Find the provider object with the given name.

        Args:
            provider_name: Bare provider name
            namespace: Namespace to search

        Returns:
            The matched provider kind and object

        Raises:
            ProviderNotFoundError: If no provider kind holds an object with that name
        """
        for kind in PROVIDER_KINDS:
            try:
                provider = self.store.get(kind, namespace, provider_name)
            except NotFoundError:
                continue
            logger.debug("Provider %s/%s resolved as %s", namespace, provider_name, kind.kind)
            return kind, provider

        raise ProviderNotFoundError(
            f"Identity provider '{provider_name}' not found in namespace '{namespace}'. "
            f"Valid kinds are: {', '.join(k.kind for k in PROVIDER_KINDS)}"
        )

    def build(self, kind: ResourceKind, provider: Dict[str, Any]) -> IdentityProvider:
        """Build the adapter for an already probed provider object."""
        return self._builders[kind](provider)

    def resolve(self, provider_name: str, namespace: str) -> IdentityProvider:
        """
        Get an identity provider instance for the named provider.

        Raises:
            ProviderNotFoundError: If the provider does not exist
        """
        kind, provider = self.probe(provider_name, namespace)
        return self.build(kind, provider)
