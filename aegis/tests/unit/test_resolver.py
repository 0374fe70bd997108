"""
Provider resolver tests.
"""

import pytest

from aegis.exceptions import AegisError, NotFoundError, ProviderNotFoundError
from aegis.identity.aws_provider import AWSIdentityProvider
from aegis.identity.azure_provider import AzureIdentityProvider
from aegis.identity.factory import ProviderResolver
from aegis.identity.kubernetes_provider import KubernetesIdentityProvider
from aegis.identity.vault_provider import VaultIdentityProvider
from aegis.resources import (
    AWS_PROVIDER,
    AZURE_PROVIDER,
    IDENTITY,
    KUBERNETES_PROVIDER,
    VAULT_PROVIDER,
    new_object,
)


@pytest.fixture
def resolver(store, config):
    return ProviderResolver(store, config)


def add(store, kind, name, **spec):
    store.add(kind, new_object(kind, name, "apps", spec=spec))


class TestProviderResolver:
    def test_vault_provider(self, resolver, store, config):
        add(store, VAULT_PROVIDER, "vault-prov", vaultAddress="http://vault:8200")

        adapter = resolver.resolve("vault-prov", "apps")

        assert isinstance(adapter, VaultIdentityProvider)
        assert adapter.vault_address == "http://vault:8200"
        assert adapter.token.token_path == config.vault_token_path

    def test_azure_provider(self, resolver, store, config):
        add(store, AZURE_PROVIDER, "azure-prov", tenantID="tenant-1", clientID="client-1")

        adapter = resolver.resolve("azure-prov", "apps")

        assert isinstance(adapter, AzureIdentityProvider)
        assert adapter.tenant_id == "tenant-1"
        assert adapter.client_id == "client-1"
        assert adapter.token.token_path == config.azure_token_path

    def test_aws_provider(self, resolver, store, config):
        add(
            store,
            AWS_PROVIDER,
            "aws-prov",
            region="eu-west-1",
            roleARN="arn:aws:iam::123456789012:role/aegis",
            identityPoolID="eu-west-1:pool",
        )

        adapter = resolver.resolve("aws-prov", "apps")

        assert isinstance(adapter, AWSIdentityProvider)
        assert adapter.region == "eu-west-1"
        assert adapter.role_arn == "arn:aws:iam::123456789012:role/aegis"
        assert adapter.identity_pool_id == "eu-west-1:pool"
        assert adapter.tokens is store
        assert adapter.token.token_path == config.aws_token_path

    def test_kubernetes_provider(self, resolver, store):
        add(store, KUBERNETES_PROVIDER, "kube-prov")

        adapter = resolver.resolve("kube-prov", "apps")

        assert isinstance(adapter, KubernetesIdentityProvider)

    def test_precedence_when_names_collide(self, resolver, store):
        add(store, KUBERNETES_PROVIDER, "shared")
        add(store, AZURE_PROVIDER, "shared", tenantID="t")
        add(store, VAULT_PROVIDER, "shared", vaultAddress="http://vault:8200")

        kind, provider = resolver.probe("shared", "apps")

        assert kind == VAULT_PROVIDER
        assert provider["spec"]["vaultAddress"] == "http://vault:8200"

    def test_probe_order(self, resolver, store):
        add(store, KUBERNETES_PROVIDER, "kube-prov")

        resolver.probe("kube-prov", "apps")

        probed = [call[1] for call in store.calls if call[0] == "get"]
        assert probed == [
            "HashicorpVaultProvider",
            "AzureProvider",
            "AWSProvider",
            "KubernetesProvider",
        ]

    def test_other_namespace_is_not_searched(self, resolver, store):
        add(store, VAULT_PROVIDER, "vault-prov")

        with pytest.raises(ProviderNotFoundError):
            resolver.resolve("vault-prov", "elsewhere")

    def test_not_found(self, resolver):
        with pytest.raises(NotFoundError) as excinfo:
            resolver.resolve("nowhere", "apps")
        assert isinstance(excinfo.value, ProviderNotFoundError)

    def test_store_errors_abort_the_probe(self, config):
        class BrokenStore:
            def get(self, kind, namespace, name):
                raise AegisError("API request failed (500)")

        with pytest.raises(AegisError) as excinfo:
            ProviderResolver(BrokenStore(), config).resolve("vault-prov", "apps")
        assert not isinstance(excinfo.value, NotFoundError)


class TestKubernetesIdentityProvider:
    def test_service_account_is_the_identity(self):
        provider = KubernetesIdentityProvider()
        identity = new_object(IDENTITY, "svc-a", "apps", spec={"provider": "kube-prov"})

        assert provider.get_name() == "kubernetes"
        assert provider.create_identity(identity) == {}
        assert provider.get_identity(identity) is True
        assert provider.delete_identity(identity) is None
