"""
aegis.identity.aws_provider

AWS Cognito identity provider implementation.
"""

import logging
from typing import Any, Dict, Optional, Protocol, Sequence

import boto3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import ExternalSystemError, UnsupportedOperationError
from ..resources import name_of, namespace_of
from .provider import STATUS_META_IDENTITY_ID, IdentityProvider
from .token import ProjectedToken

logger = logging.getLogger(__name__)

PROVIDER_NAME = "aws"
STS_AUDIENCE = "sts.amazonaws.com"
TOKEN_EXPIRATION_SECONDS = 3600
ROLE_SESSION_NAME = "k8s-service-account-session"


class TokenRequester(Protocol):
    def request_token(
        self,
        namespace: str,
        service_account: str,
        audiences: Sequence[str],
        expiration_seconds: int,
    ) -> str: ...


class AWSIdentityProvider(IdentityProvider):
    """AWS Cognito identity pool provider."""

    def __init__(
        self,
        region: str,
        role_arn: str,
        identity_pool_id: str,
        tokens: TokenRequester,
        token: ProjectedToken,
        session: Optional[boto3.session.Session] = None,
    ):
        """
        Initialize AWS provider.

        Args:
            region: AWS region of the identity pool
            role_arn: Role assumed for identity deletion
            identity_pool_id: Cognito identity pool
            tokens: Issues service account tokens for the STS audience
            token: Operator token (issuer source and web identity for STS)
            session: boto3 session override
        """
        self.region = region
        self.role_arn = role_arn
        self.identity_pool_id = identity_pool_id
        self.tokens = tokens
        self.token = token
        self._session = session or boto3.session.Session()

    def get_name(self) -> str:
        """Return provider name."""
        return PROVIDER_NAME

    def create_identity(self, identity: Dict[str, Any]) -> Dict[str, str]:
        name = name_of(identity)
        namespace = namespace_of(identity)

        sa_token = self.tokens.request_token(
            namespace, name, [STS_AUDIENCE], TOKEN_EXPIRATION_SECONDS
        )
        login_provider = self.token.issuer().replace("https://", "")

        # GetId is a public Cognito API, the login token authenticates the call
        cognito = self._session.client(
            "cognito-identity",
            region_name=self.region,
            config=Config(signature_version=UNSIGNED),
        )
        try:
            result = cognito.get_id(
                IdentityPoolId=self.identity_pool_id,
                Logins={login_provider: sa_token},
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to create Cognito identity for %s/%s: %s", namespace, name, e)
            raise ExternalSystemError(f"Failed to create identity on Cognito: {e}") from e

        logger.info("Cognito identity for %s/%s is %s", namespace, name, result["IdentityId"])
        return {STATUS_META_IDENTITY_ID: result["IdentityId"]}

    def get_identity(self, identity: Dict[str, Any]) -> bool:
        raise UnsupportedOperationError("get_identity is not implemented for AWS")

    def _assume_role(self) -> Dict[str, str]:
        sts = self._session.client("sts", region_name=self.region)
        try:
            response = sts.assume_role_with_web_identity(
                RoleArn=self.role_arn,
                RoleSessionName=ROLE_SESSION_NAME,
                WebIdentityToken=self.token.read(),
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to assume role %s: %s", self.role_arn, e)
            raise ExternalSystemError(f"Failed to assume role {self.role_arn}: {e}") from e
        return response["Credentials"]

    def delete_identity(self, identity: Dict[str, Any]) -> None:
        metadata = (identity.get("status") or {}).get("metadata") or {}
        identity_id = metadata.get(STATUS_META_IDENTITY_ID)
        if not identity_id:
            logger.info(
                "Identity %s/%s has no Cognito identity id, nothing to delete",
                namespace_of(identity),
                name_of(identity),
            )
            return

        credentials = self._assume_role()
        cognito = self._session.client(
            "cognito-identity",
            region_name=self.region,
            aws_access_key_id=credentials["AccessKeyId"],
            aws_secret_access_key=credentials["SecretAccessKey"],
            aws_session_token=credentials["SessionToken"],
        )
        logger.info("Deleting identity %s from Cognito", identity_id)
        try:
            result = cognito.delete_identities(IdentityIdsToDelete=[identity_id])
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to delete identity %s from Cognito: %s", identity_id, e)
            raise ExternalSystemError(f"Failed to delete identity from Cognito: {e}") from e

        unprocessed = result.get("UnprocessedIdentityIds") or []
        if unprocessed:
            raise ExternalSystemError(
                f"Cognito did not delete identity {identity_id}: "
                f"{unprocessed[0].get('ErrorCode', 'unknown error')}"
            )
