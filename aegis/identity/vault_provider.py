"""
aegis.identity.vault_provider

HashiCorp Vault identity provider implementation.

Each Identity maps to a Vault identity entity named after the service
account subject, an entity alias on the JWT auth mount, a JWT auth role
bound to the subject and an OIDC role issuing short-lived identity tokens.
"""

import base64
import logging
from typing import Any, Dict, Optional

import hvac
import requests
from hvac.exceptions import InvalidPath, VaultError

from ..exceptions import ExternalSystemError
from ..resources import name_of, namespace_of, service_account_subject
from .provider import (
    STATUS_META_IDENTITY_ID,
    STATUS_META_PROVIDER,
    STATUS_META_VAULT_ADDRESS,
    IdentityProvider,
)
from .token import ProjectedToken

logger = logging.getLogger(__name__)

PROVIDER_NAME = "hashicorp.vault"
OPERATOR_ROLE = "aegis"
JWT_MOUNT = "jwt"
OIDC_KEY_NAME = "aegis-key"
TOKEN_TTL = "1h"
TOKEN_AUDIENCE = "vault"
JWT_ROLE_POLICIES = ["default", "jwt_issuer"]

META_VERSION = "aegis_version"
META_IDENTITY = "aegis_identity_name"
META_NAMESPACE = "aegis_identity_namespace"

TOKEN_TEMPLATE = """{
  "name": {{identity.entity.name}},
  "identity": {{identity.entity.metadata.aegis_identity_name}},
  "namespace": {{identity.entity.metadata.aegis_identity_namespace}},
  "nbf": {{time.now}}
}"""


class VaultIdentityProvider(IdentityProvider):
    """HashiCorp Vault identity provider."""

    def __init__(
        self,
        vault_address: str,
        token: ProjectedToken,
    ):
        """
        Initialize Vault provider.

        Args:
            vault_address: Vault server URL
            token: Operator token used for the JWT login
        """
        self.vault_address = vault_address
        self.token = token
        self._template_b64 = base64.b64encode(TOKEN_TEMPLATE.encode("utf-8")).decode(
            "ascii"
        )

    def get_name(self) -> str:
        """Return provider name."""
        return PROVIDER_NAME

    def _login(self) -> hvac.Client:
        client = hvac.Client(url=self.vault_address)
        try:
            client.auth.jwt.jwt_login(
                role=OPERATOR_ROLE, jwt=self.token.read(), path=JWT_MOUNT
            )
        except (VaultError, requests.exceptions.RequestException) as e:
            logger.error("Unable to log in to Vault at %s: %s", self.vault_address, e)
            raise ExternalSystemError(
                f"Vault login at {self.vault_address} failed: {e}"
            ) from e
        return client

    def _read_entity(self, client: hvac.Client, subject: str) -> Optional[Dict[str, Any]]:
        try:
            response = client.secrets.identity.read_entity_by_name(name=subject)
        except InvalidPath:
            return None
        if not response:
            return None
        return response["data"]

    def _jwt_accessor(self, client: hvac.Client) -> str:
        methods = client.sys.list_auth_methods()
        methods = methods.get("data") or methods
        mount = methods.get(f"{JWT_MOUNT}/")
        if not mount:
            raise ExternalSystemError(
                f"JWT auth method is not enabled at {self.vault_address}"
            )
        return mount["accessor"]

    def create_identity(self, identity: Dict[str, Any]) -> Dict[str, str]:
        name = name_of(identity)
        namespace = namespace_of(identity)
        subject = service_account_subject(namespace, name)
        client = self._login()

        try:
            client.secrets.identity.create_or_update_entity_by_name(
                name=subject,
                metadata={
                    META_VERSION: "1.0",
                    META_IDENTITY: name,
                    META_NAMESPACE: namespace,
                },
            )
            entity = self._read_entity(client, subject)
            if entity is None:
                raise ExternalSystemError(f"Vault entity {subject} missing after creation")
            entity_id = entity["id"]
            logger.info("Vault entity %s has id %s", subject, entity_id)

            client.auth.jwt.create_role(
                name=name,
                role_type="jwt",
                user_claim="sub",
                allowed_redirect_uris=[],
                bound_subject=subject,
                bound_audiences=[TOKEN_AUDIENCE],
                token_policies=JWT_ROLE_POLICIES,
                path=JWT_MOUNT,
            )
            logger.info("Created JWT role %s", name)

            accessor = self._jwt_accessor(client)
            aliases = entity.get("aliases") or []
            if any(alias.get("mount_accessor") == accessor for alias in aliases):
                logger.info("Entity alias for %s already exists", subject)
            else:
                client.secrets.identity.create_or_update_entity_alias(
                    name=subject, canonical_id=entity_id, mount_accessor=accessor
                )
                logger.info("Created entity alias for %s", subject)

            client.secrets.identity.create_or_update_role(
                name=name,
                key=OIDC_KEY_NAME,
                template=self._template_b64,
                ttl=TOKEN_TTL,
            )
            logger.info("Created OIDC role %s", name)
        except (VaultError, requests.exceptions.RequestException) as e:
            logger.error("Failed to create Vault identity %s: %s", subject, e)
            raise ExternalSystemError(f"Failed to create Vault identity {subject}: {e}") from e

        return {
            STATUS_META_IDENTITY_ID: entity_id,
            STATUS_META_PROVIDER: PROVIDER_NAME,
            STATUS_META_VAULT_ADDRESS: self.vault_address,
        }

    def get_identity(self, identity: Dict[str, Any]) -> bool:
        subject = service_account_subject(namespace_of(identity), name_of(identity))
        client = self._login()
        try:
            return self._read_entity(client, subject) is not None
        except (VaultError, requests.exceptions.RequestException) as e:
            raise ExternalSystemError(f"Failed to read Vault entity {subject}: {e}") from e

    def delete_identity(self, identity: Dict[str, Any]) -> None:
        name = name_of(identity)
        subject = service_account_subject(namespace_of(identity), name)
        client = self._login()

        try:
            client.auth.jwt.delete_role(name=name, path=JWT_MOUNT)
            logger.info("Deleted JWT role %s", name)

            client.secrets.identity.delete_role(name=name)
            logger.info("Deleted OIDC role %s", name)

            # alias ids are not persisted, enumerate them from the entity
            entity = self._read_entity(client, subject)
            if entity is None:
                logger.info("Vault entity %s already deleted", subject)
                return
            for alias in entity.get("aliases") or []:
                client.secrets.identity.delete_entity_alias(alias_id=alias["id"])
                logger.info("Deleted entity alias %s", alias["id"])

            client.secrets.identity.delete_entity_by_name(name=subject)
            logger.info("Deleted Vault entity %s", subject)
        except (VaultError, requests.exceptions.RequestException) as e:
            logger.error("Failed to delete Vault identity %s: %s", subject, e)
            raise ExternalSystemError(f"Failed to delete Vault identity {subject}: {e}") from e
