"""
aegis.identity.azure_provider

Microsoft Entra ID identity provider implementation.

Each Identity maps to an application registration (display name = service
account subject) with a service principal, a self-assigned app role and a
federated identity credential trusting the cluster's OIDC issuer.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.identity import ClientAssertionCredential

from ..exceptions import ExternalSystemError
from ..resources import name_of, namespace_of, service_account_subject
from .provider import (
    STATUS_META_AZURE_TENANT_ID,
    STATUS_META_IDENTITY_ID,
    STATUS_META_OBJECT_ID,
    STATUS_META_PROVIDER,
    IdentityProvider,
)
from .token import ProjectedToken

logger = logging.getLogger(__name__)

PROVIDER_NAME = "azure"
GRAPH_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
TOKEN_EXCHANGE_AUDIENCE = "api://AzureADTokenExchange"
DEFAULT_TIMEOUT = 10.0


@dataclass
class _Application:
    object_id: str
    client_id: str
    service_principal_id: str
    role_id: Optional[str]


class AzureIdentityProvider(IdentityProvider):
    """Microsoft Entra ID identity provider backed by Microsoft Graph."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        token: ProjectedToken,
        credential: Optional[TokenCredential] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize Azure provider.

        Args:
            tenant_id: Entra ID tenant
            client_id: Application the operator authenticates as
            token: Operator token used as client assertion and issuer source
            credential: Graph credential (defaults to client assertion federation)
            transport: httpx transport override
            timeout: Graph request timeout in seconds
        """
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.token = token
        self._credential = credential
        self._transport = transport
        self._timeout = timeout

    def get_name(self) -> str:
        """Return provider name."""
        return PROVIDER_NAME

    def _graph(self) -> httpx.Client:
        credential = self._credential or ClientAssertionCredential(
            self.tenant_id, self.client_id, func=self.token.read
        )
        try:
            access_token = credential.get_token(GRAPH_SCOPE).token
        except AzureError as e:
            logger.error("Failed to obtain Microsoft Graph token: %s", e)
            raise ExternalSystemError(f"Failed to obtain Microsoft Graph token: {e}") from e
        return httpx.Client(
            base_url=GRAPH_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    def _call(
        self, graph: httpx.Client, method: str, url: str, **kwargs: Any
    ) -> Optional[Dict[str, Any]]:
        try:
            response = graph.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Graph %s %s failed: %s", method, url, e.response.text)
            raise ExternalSystemError(
                f"Graph {method} {url} failed with {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("Graph %s %s failed: %s", method, url, e)
            raise ExternalSystemError(f"Graph {method} {url} failed: {e}") from e
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _list(self, graph: httpx.Client, url: str, flt: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"$filter": flt} if flt else None
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        while next_url:
            result = self._call(graph, "GET", next_url, params=params) or {}
            items.extend(result.get("value") or [])
            # nextLink is absolute and already carries the query
            next_url = result.get("@odata.nextLink")
            params = None
        return items

    def _find_application(self, graph: httpx.Client, subject: str) -> Optional[Dict[str, Any]]:
        apps = self._list(graph, "/applications", f"displayName eq '{subject}'")
        if not apps:
            return None
        return apps[0]

    def _create_application(
        self, graph: httpx.Client, identity: Dict[str, Any], subject: str, issuer: str
    ) -> _Application:
        role_id = str(uuid.uuid4())
        body = {
            "displayName": subject,
            "tags": [
                "aegis",
                f"identity:{name_of(identity)}",
                f"identity.namespace:{namespace_of(identity)}",
                f"issuer:{issuer}",
            ],
            "api": {"acceptMappedClaims": True},
            "appRoles": [
                {
                    "id": role_id,
                    "displayName": subject,
                    "value": subject,
                    "description": subject,
                    "allowedMemberTypes": ["Application"],
                    "isEnabled": True,
                }
            ],
        }
        logger.info("Creating Azure application %s", subject)
        app = self._call(graph, "POST", "/applications", json=body)
        sp = self._call(graph, "POST", "/servicePrincipals", json={"appId": app["appId"]})
        return _Application(
            object_id=app["id"],
            client_id=app["appId"],
            service_principal_id=sp["id"],
            role_id=role_id,
        )

    def _load_application(self, graph: httpx.Client, app: Dict[str, Any]) -> _Application:
        principals = self._list(graph, "/servicePrincipals", f"appId eq '{app['appId']}'")
        if principals:
            sp = principals[0]
        else:
            logger.info("Creating missing service principal for application %s", app["appId"])
            sp = self._call(graph, "POST", "/servicePrincipals", json={"appId": app["appId"]})
        roles = app.get("appRoles") or []
        return _Application(
            object_id=app["id"],
            client_id=app["appId"],
            service_principal_id=sp["id"],
            role_id=roles[0]["id"] if roles else None,
        )

    def _ensure_app_role_assignment(self, graph: httpx.Client, app: _Application) -> None:
        sp_id = app.service_principal_id
        assigned = self._list(graph, f"/servicePrincipals/{sp_id}/appRoleAssignedTo")
        if assigned:
            logger.info("App role assignment already exists for %s", sp_id)
            return
        if app.role_id is None:
            raise ExternalSystemError(f"Application {app.client_id} has no app role to assign")
        self._call(
            graph,
            "POST",
            f"/servicePrincipals/{sp_id}/appRoleAssignments",
            json={"principalId": sp_id, "resourceId": sp_id, "appRoleId": app.role_id},
        )
        logger.info("Assigned app role %s to service principal %s", app.role_id, sp_id)

    def _ensure_federated_credential(
        self, graph: httpx.Client, app: _Application, name: str, subject: str, issuer: str
    ) -> None:
        url = f"/applications/{app.object_id}/federatedIdentityCredentials"
        for fic in self._list(graph, url):
            if fic.get("name") == name:
                logger.info("FederatedIdentityCredential %s already exists", name)
                return
        logger.info("Creating FederatedIdentityCredential %s", name)
        self._call(
            graph,
            "POST",
            url,
            json={
                "name": name,
                "issuer": issuer,
                "subject": subject,
                "audiences": [TOKEN_EXCHANGE_AUDIENCE],
            },
        )

    def create_identity(self, identity: Dict[str, Any]) -> Dict[str, str]:
        name = name_of(identity)
        subject = service_account_subject(namespace_of(identity), name)
        issuer = self.token.issuer()

        with self._graph() as graph:
            existing = self._find_application(graph, subject)
            if existing is None:
                app = self._create_application(graph, identity, subject, issuer)
            else:
                logger.info("Azure application %s already exists", subject)
                app = self._load_application(graph, existing)
            self._ensure_app_role_assignment(graph, app)
            self._ensure_federated_credential(graph, app, name, subject, issuer)

        return {
            STATUS_META_OBJECT_ID: app.object_id,
            STATUS_META_IDENTITY_ID: app.client_id,
            STATUS_META_AZURE_TENANT_ID: self.tenant_id,
            STATUS_META_PROVIDER: PROVIDER_NAME,
        }

    def get_identity(self, identity: Dict[str, Any]) -> bool:
        subject = service_account_subject(namespace_of(identity), name_of(identity))
        with self._graph() as graph:
            return self._find_application(graph, subject) is not None

    def delete_identity(self, identity: Dict[str, Any]) -> None:
        subject = service_account_subject(namespace_of(identity), name_of(identity))
        with self._graph() as graph:
            app = self._find_application(graph, subject)
            if app is None:
                logger.info("Azure application %s already deleted", subject)
                return
            logger.info("Deleting Azure application %s (%s)", subject, app["id"])
            self._call(graph, "DELETE", f"/applications/{app['id']}")
