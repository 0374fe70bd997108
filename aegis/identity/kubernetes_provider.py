"""
aegis.identity.kubernetes_provider

Kubernetes-native identity provider: the service account is the identity.
"""

from typing import Any, Dict

from .provider import IdentityProvider

PROVIDER_NAME = "kubernetes"


class KubernetesIdentityProvider(IdentityProvider):
    """Kubernetes ServiceAccount identity provider."""

    def get_name(self) -> str:
        """Return provider name."""
        return PROVIDER_NAME

    def create_identity(self, identity: Dict[str, Any]) -> Dict[str, str]:
        return {}

    def get_identity(self, identity: Dict[str, Any]) -> bool:
        return True

    def delete_identity(self, identity: Dict[str, Any]) -> None:
        return None
