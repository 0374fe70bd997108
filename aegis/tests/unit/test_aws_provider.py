"""
AWS Cognito provider tests using botocore's Stubber.
"""

import datetime

import boto3
import pytest
from botocore import UNSIGNED
from botocore.stub import Stubber

from aegis.exceptions import ExternalSystemError, UnsupportedOperationError
from aegis.identity.aws_provider import AWSIdentityProvider
from aegis.identity.token import ProjectedToken
from aegis.resources import IDENTITY, new_object

REGION = "eu-west-1"
POOL_ID = "eu-west-1:11111111-2222-3333-4444-555555555555"
IDENTITY_ID = "eu-west-1:aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"
ROLE_ARN = "arn:aws:iam::123456789012:role/aegis-operator"


class FakeSession:
    """Hands out pre-built stubbed clients and records how they were asked for."""

    def __init__(self):
        session = boto3.session.Session(
            aws_access_key_id="testing", aws_secret_access_key="testing", region_name=REGION
        )
        self.clients = {
            "cognito-identity": session.client("cognito-identity"),
            "sts": session.client("sts"),
        }
        self.stubbers = {name: Stubber(c) for name, c in self.clients.items()}
        self.requested = []

    def client(self, service_name, **kwargs):
        self.requested.append((service_name, kwargs))
        return self.clients[service_name]


@pytest.fixture
def session():
    session = FakeSession()
    for stubber in session.stubbers.values():
        stubber.activate()
    yield session
    for stubber in session.stubbers.values():
        stubber.deactivate()


@pytest.fixture
def provider(store, session, make_token):
    token = ProjectedToken(
        make_token({"iss": "https://oidc.example.com/cluster", "sub": "op"}, "aws_token")
    )
    return AWSIdentityProvider(
        region=REGION,
        role_arn=ROLE_ARN,
        identity_pool_id=POOL_ID,
        tokens=store,
        token=token,
        session=session,
    )


@pytest.fixture
def identity():
    return new_object(IDENTITY, "svc-a", "apps", spec={"provider": "aws-prov"})


class TestAWSCreate:
    def test_create_exchanges_service_account_token(self, provider, session, store, identity):
        session.stubbers["cognito-identity"].add_response(
            "get_id",
            {"IdentityId": IDENTITY_ID},
            {
                "IdentityPoolId": POOL_ID,
                "Logins": {"oidc.example.com/cluster": "token-svc-a"},
            },
        )

        metadata = provider.create_identity(identity)

        assert metadata == {"aegis.identity.id": IDENTITY_ID}
        assert store.token_requests == [
            {
                "namespace": "apps",
                "service_account": "svc-a",
                "audiences": ["sts.amazonaws.com"],
                "expiration_seconds": 3600,
            }
        ]
        service, kwargs = session.requested[0]
        assert service == "cognito-identity"
        assert kwargs["config"].signature_version is UNSIGNED
        session.stubbers["cognito-identity"].assert_no_pending_responses()

    def test_cognito_error_is_external_error(self, provider, session, identity):
        session.stubbers["cognito-identity"].add_client_error(
            "get_id", service_error_code="NotAuthorizedException", http_status_code=400
        )

        with pytest.raises(ExternalSystemError):
            provider.create_identity(identity)


class TestAWSDelete:
    def test_delete_assumes_role_then_deletes_identity(self, provider, session, identity):
        identity["status"] = {"metadata": {"aegis.identity.id": IDENTITY_ID}}
        session.stubbers["sts"].add_response(
            "assume_role_with_web_identity",
            {
                "Credentials": {
                    "AccessKeyId": "ASIAEXAMPLE12345",
                    "SecretAccessKey": "secret",
                    "SessionToken": "session-token",
                    "Expiration": datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc),
                }
            },
            {
                "RoleArn": ROLE_ARN,
                "RoleSessionName": "k8s-service-account-session",
                "WebIdentityToken": provider.token.read(),
            },
        )
        session.stubbers["cognito-identity"].add_response(
            "delete_identities",
            {"UnprocessedIdentityIds": []},
            {"IdentityIdsToDelete": [IDENTITY_ID]},
        )

        provider.delete_identity(identity)

        for stubber in session.stubbers.values():
            stubber.assert_no_pending_responses()
        service, kwargs = session.requested[-1]
        assert service == "cognito-identity"
        assert kwargs["aws_access_key_id"] == "ASIAEXAMPLE12345"
        assert kwargs["aws_session_token"] == "session-token"

    def test_delete_without_identity_id_is_noop(self, provider, session, identity):
        provider.delete_identity(identity)

        assert session.requested == []

    def test_unprocessed_identity_is_external_error(self, provider, session, identity):
        identity["status"] = {"metadata": {"aegis.identity.id": IDENTITY_ID}}
        session.stubbers["sts"].add_response(
            "assume_role_with_web_identity",
            {
                "Credentials": {
                    "AccessKeyId": "ASIAEXAMPLE12345",
                    "SecretAccessKey": "secret",
                    "SessionToken": "session-token",
                    "Expiration": datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc),
                }
            },
        )
        session.stubbers["cognito-identity"].add_response(
            "delete_identities",
            {
                "UnprocessedIdentityIds": [
                    {"IdentityId": IDENTITY_ID, "ErrorCode": "InternalServerError"}
                ]
            },
        )

        with pytest.raises(ExternalSystemError, match="InternalServerError"):
            provider.delete_identity(identity)

    def test_assume_role_error_is_external_error(self, provider, session, identity):
        identity["status"] = {"metadata": {"aegis.identity.id": IDENTITY_ID}}
        session.stubbers["sts"].add_client_error(
            "assume_role_with_web_identity", service_error_code="AccessDenied"
        )

        with pytest.raises(ExternalSystemError):
            provider.delete_identity(identity)


class TestAWSGet:
    def test_get_is_unsupported(self, provider, identity):
        with pytest.raises(UnsupportedOperationError):
            provider.get_identity(identity)

    def test_get_name(self, provider):
        assert provider.get_name() == "aws"
