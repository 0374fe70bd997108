"""
aegis.identity.provider

Abstract base class for workload identity providers.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

# Status metadata keys shared between the controllers and the admission webhook
STATUS_META_IDENTITY_ID = "aegis.identity.id"
STATUS_META_PROVIDER = "aegis.identity.provider"
STATUS_META_OBJECT_ID = "aegis.identity.objectid"
STATUS_META_VAULT_ADDRESS = "aegis.identity.vault.address"
STATUS_META_AZURE_TENANT_ID = "aegis.identity.azure.tenantid"


class IdentityProvider(ABC):
    """Provisions workload identities in one external identity back-end."""

    @abstractmethod
    def get_name(self) -> str:
        """
        Returns the provider kind.

        Returns:
            str: Canonical kind (e.g., 'hashicorp.vault', 'azure', 'aws', 'kubernetes')
        """
        pass

    @abstractmethod
    def create_identity(self, identity: Dict[str, Any]) -> Dict[str, str]:
        """
        Creates the back-end identity for an Identity resource.

        Safe to call repeatedly: existing back-end objects are looked up and
        reused instead of being created again.

        Args:
            identity: The Identity resource

        Returns:
            Dict[str, str]: Status metadata describing the created identity

        Raises:
            ExternalSystemError: If the back-end rejects or fails a call
        """
        pass

    @abstractmethod
    def get_identity(self, identity: Dict[str, Any]) -> bool:
        """
        Reports whether the back-end identity exists.

        Raises:
            ExternalSystemError: If the back-end cannot be queried
            UnsupportedOperationError: If the provider cannot answer
        """
        pass

    @abstractmethod
    def delete_identity(self, identity: Dict[str, Any]) -> None:
        """
        Removes every back-end object created for the Identity resource.

        Raises:
            ExternalSystemError: If the back-end rejects or fails a call
        """
        pass
