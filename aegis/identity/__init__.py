"""
aegis.identity

Workload identity provider package for Aegis.

This package provides one pluggable interface implemented for HashiCorp
Vault, Microsoft Entra ID, AWS Cognito and Kubernetes service accounts, plus
the resolver that picks an implementation from a provider name.
"""

from .provider import IdentityProvider
from .vault_provider import VaultIdentityProvider
from .azure_provider import AzureIdentityProvider
from .aws_provider import AWSIdentityProvider
from .kubernetes_provider import KubernetesIdentityProvider
from .factory import ProviderResolver
from .token import ProjectedToken

__all__ = [
    # Abstract classes
    "IdentityProvider",
    # Implementations
    "VaultIdentityProvider",
    "AzureIdentityProvider",
    "AWSIdentityProvider",
    "KubernetesIdentityProvider",
    # Resolver
    "ProviderResolver",
    "ProjectedToken",
]
