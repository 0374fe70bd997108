"""
aegis.webhook.mutation

Admission-time pod mutation: decides from the pod annotations whether an
Aegis proxy must run next to the workload, resolves the Identity and provider
it trusts, and injects the proxy sidecar, the redirection init container and
the projected token volume.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..exceptions import AlreadyExistsError, NotFoundError, UnknownProviderError, ValidationError
from ..identity import aws_provider, azure_provider, kubernetes_provider, vault_provider
from ..identity.factory import ProviderResolver
from ..identity.provider import STATUS_META_IDENTITY_ID
from ..kube import ResourceStore
from ..resources import (
    AWS_PROVIDER,
    AZURE_PROVIDER,
    IDENTITY,
    KUBERNETES_PROVIDER,
    SERVICE_ACCOUNT,
    VAULT_PROVIDER,
    new_object,
)
from .scripts import EGRESS, INGRESS, INGRESS_EGRESS, RedirectionScripts

logger = logging.getLogger(__name__)

# Annotations
ANNOTATION_EGRESS = "aegisproxy.io/egress"
ANNOTATION_INGRESS = "aegisproxy.io/ingress"
ANNOTATION_INGRESS_PORT = "aegisproxy.io/ingress.port"
ANNOTATION_IDENTITY = "aegisproxy.io/identity"
ANNOTATION_POLICY = "aegisproxy.io/ingress.policy"
ANNOTATION_IDENTITY_PROVIDER = "aegisproxy.io/identity.provider"
ANNOTATION_TRUE = "true"

# Injected objects
PROXY_CONTAINER_NAME = "aegis-proxy"
INIT_CONTAINER_NAME = "aegis-init"
PROXY_COMMAND = "./aegisproxy"
PROXY_UID = 1137
INBOUND_PORT = 3127
OUTBOUND_PORT = 3128
TOKEN_VOLUME = "satoken"
TOKEN_MOUNT_PATH = "/var/run/secrets/tokens"
TOKEN_FILE = "token"
TOKEN_EXPIRATION_SECONDS = 7200
ENV_PREFIXES = ("OTEL", "AEGIS")

INGRESS_SERVICE_ACCOUNT = "aegisproxy"
DEFAULT_SERVICE_ACCOUNT = "default"

PROVIDER_KINDS_BY_NAME = {
    vault_provider.PROVIDER_NAME: VAULT_PROVIDER,
    azure_provider.PROVIDER_NAME: AZURE_PROVIDER,
    aws_provider.PROVIDER_NAME: AWS_PROVIDER,
    kubernetes_provider.PROVIDER_NAME: KUBERNETES_PROVIDER,
}
PROVIDER_NAMES_BY_KIND = {kind: name for name, kind in PROVIDER_KINDS_BY_NAME.items()}

TOKEN_AUDIENCES = {
    vault_provider.PROVIDER_NAME: vault_provider.TOKEN_AUDIENCE,
    azure_provider.PROVIDER_NAME: azure_provider.TOKEN_EXCHANGE_AUDIENCE,
    kubernetes_provider.PROVIDER_NAME: kubernetes_provider.PROVIDER_NAME,
}


@dataclass
class InjectionPlan:
    """Everything the injection needs, computed for one admission call."""

    proxy_type: str
    identity: str = ""
    provider_name: str = ""
    provider_kind: str = ""
    audience: str = ""
    policy: str = ""
    ingress_port: str = ""
    provider_args: List[str] = field(default_factory=list)
    script: str = ""

    @property
    def service_account(self) -> str:
        return self.identity or DEFAULT_SERVICE_ACCOUNT

    def proxy_args(self) -> List[str]:
        args = [
            "run",
            "--type", self.proxy_type,
            "--inport", str(INBOUND_PORT),
            "--outport", str(OUTBOUND_PORT),
            "--token", f"{TOKEN_MOUNT_PATH}/{TOKEN_FILE}",
            "--identity", self.service_account,
            "--identity-provider", self.provider_kind,
        ]
        if self.policy:
            args += ["--policy", self.policy]
        return args + self.provider_args


def _annotations(pod: Dict[str, Any]) -> Dict[str, str]:
    return (pod.get("metadata") or {}).get("annotations") or {}


def _containers(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    spec = pod.get("spec") or {}
    return (spec.get("containers") or []) + (spec.get("initContainers") or [])


def is_injected(pod: Dict[str, Any]) -> bool:
    """Whether the pod already runs a proxy or init container."""
    names = {PROXY_CONTAINER_NAME, INIT_CONTAINER_NAME}
    return any(c.get("name") in names for c in _containers(pod))


def parse_annotations(pod: Dict[str, Any]) -> Optional[InjectionPlan]:
    """
    Read the requested proxy configuration from the pod annotations.

    Returns:
        A partial plan holding the proxy type and the annotation values, or
        None when the pod asks for no proxy

    Raises:
        ValidationError: If the annotation combination is incomplete
    """
    annotations = _annotations(pod)
    plan: Optional[InjectionPlan] = None

    if annotations.get(ANNOTATION_EGRESS) == ANNOTATION_TRUE:
        identity = annotations.get(ANNOTATION_IDENTITY, "")
        if not identity:
            raise ValidationError(
                f"Annotation {ANNOTATION_IDENTITY} is required for an egress proxy"
            )
        plan = InjectionPlan(proxy_type=EGRESS, identity=identity)

    if annotations.get(ANNOTATION_INGRESS) == ANNOTATION_TRUE:
        ingress_port = annotations.get(ANNOTATION_INGRESS_PORT, "")
        if not ingress_port:
            raise ValidationError(
                f"Annotation {ANNOTATION_INGRESS_PORT} is required for an ingress proxy"
            )
        if not ingress_port.isdigit() or not 0 < int(ingress_port) < 65536:
            raise ValidationError(
                f"Annotation {ANNOTATION_INGRESS_PORT} must be a port number, got '{ingress_port}'"
            )
        if plan is not None:
            plan.proxy_type = INGRESS_EGRESS
        else:
            provider_name = annotations.get(ANNOTATION_IDENTITY_PROVIDER, "")
            if not provider_name:
                raise ValidationError(
                    f"Annotation {ANNOTATION_IDENTITY_PROVIDER} is required for an ingress proxy"
                )
            plan = InjectionPlan(proxy_type=INGRESS, provider_name=provider_name)
        plan.ingress_port = ingress_port
        plan.policy = annotations.get(ANNOTATION_POLICY, "")

    return plan


class PodMutator:
    """Computes and applies the proxy injection for a pod."""

    def __init__(
        self,
        store: ResourceStore,
        resolver: ProviderResolver,
        scripts: RedirectionScripts,
        proxy_image: str,
        iptables_image: str,
    ):
        self.store = store
        self.resolver = resolver
        self.scripts = scripts
        self.proxy_image = proxy_image
        self.iptables_image = iptables_image

    def _resolve_provider(self, plan: InjectionPlan, namespace: str) -> Dict[str, Any]:
        """Fill the provider name and kind of the plan, returning the provider object."""
        if plan.proxy_type == INGRESS:
            kind, provider = self.resolver.probe(plan.provider_name, namespace)
            plan.provider_kind = PROVIDER_NAMES_BY_KIND[kind]
            return provider

        identity = self.store.get(IDENTITY, namespace, plan.identity)
        plan.provider_name = (identity.get("spec") or {}).get("provider", "")
        plan.provider_kind = (identity.get("status") or {}).get("provider", "")
        if not plan.provider_kind:
            raise NotFoundError(
                f"Identity {namespace}/{plan.identity} has not been created by a provider yet"
            )
        kind = PROVIDER_KINDS_BY_NAME.get(plan.provider_kind)
        if kind is None:
            raise UnknownProviderError(f"Unknown provider type {plan.provider_kind}")
        return self.store.get(kind, namespace, plan.provider_name)

    def _provider_args(
        self, plan: InjectionPlan, provider: Dict[str, Any], namespace: str
    ) -> List[str]:
        spec = provider.get("spec") or {}
        if plan.provider_kind == vault_provider.PROVIDER_NAME:
            return ["--vault-address", spec.get("vaultAddress", "")]

        if plan.provider_kind == kubernetes_provider.PROVIDER_NAME:
            return ["--kubernetes-issuer", (provider.get("status") or {}).get("issuer", "")]

        if plan.provider_kind == azure_provider.PROVIDER_NAME:
            args = ["--azure-tenant-id", spec.get("tenantID", "")]
            if plan.proxy_type in (EGRESS, INGRESS_EGRESS):
                identity = self.store.get(IDENTITY, namespace, plan.identity)
                metadata = (identity.get("status") or {}).get("metadata") or {}
                client_id = metadata.get(STATUS_META_IDENTITY_ID, "")
                if not client_id:
                    raise NotFoundError(
                        f"Client id is not set for identity {namespace}/{plan.identity}"
                    )
                args += ["--azure-client-id", client_id]
            return args

        raise UnknownProviderError(f"Unknown provider type {plan.provider_kind}")

    def plan(self, pod: Dict[str, Any], namespace: str) -> Optional[InjectionPlan]:
        """
        Compute the injection plan for a pod.

        Returns:
            The plan, or None when the pod asks for no proxy

        Raises:
            ValidationError: If the annotations are incomplete or the provider
                kind has no proxy support
            NotFoundError: If the Identity or provider does not exist
        """
        plan = parse_annotations(pod)
        if plan is None:
            return None

        provider = self._resolve_provider(plan, namespace)
        plan.provider_args = self._provider_args(plan, provider, namespace)
        plan.audience = TOKEN_AUDIENCES[plan.provider_kind]
        plan.script = self.scripts.render(
            plan.proxy_type,
            uid=PROXY_UID,
            inbound_port=INBOUND_PORT,
            outbound_port=OUTBOUND_PORT,
            ingress_port=plan.ingress_port,
        )
        return plan

    def _ensure_ingress_service_account(self, namespace: str) -> None:
        try:
            self.store.get(SERVICE_ACCOUNT, namespace, INGRESS_SERVICE_ACCOUNT)
            return
        except NotFoundError:
            pass
        try:
            self.store.create(
                SERVICE_ACCOUNT, new_object(SERVICE_ACCOUNT, INGRESS_SERVICE_ACCOUNT, namespace)
            )
        except AlreadyExistsError:
            pass

    def _proxy_container(self, pod: Dict[str, Any], plan: InjectionPlan) -> Dict[str, Any]:
        env = []
        for prefix in ENV_PREFIXES:
            for container in (pod.get("spec") or {}).get("containers") or []:
                for var in container.get("env") or []:
                    if var.get("name", "").startswith(prefix):
                        env.append(copy.deepcopy(var))

        container = {
            "name": PROXY_CONTAINER_NAME,
            "image": self.proxy_image,
            "imagePullPolicy": "Always",
            "securityContext": {"runAsUser": PROXY_UID, "runAsGroup": PROXY_UID},
            "command": [PROXY_COMMAND],
            "args": plan.proxy_args(),
            "volumeMounts": [{"name": TOKEN_VOLUME, "mountPath": TOKEN_MOUNT_PATH}],
        }
        if env:
            container["env"] = env
        return container

    def _init_container(self, plan: InjectionPlan) -> Dict[str, Any]:
        return {
            "name": INIT_CONTAINER_NAME,
            "image": self.iptables_image,
            "command": ["/bin/sh", "-c", plan.script],
            "securityContext": {"capabilities": {"add": ["NET_ADMIN"]}},
        }

    def _token_volume(self, plan: InjectionPlan) -> Dict[str, Any]:
        return {
            "name": TOKEN_VOLUME,
            "projected": {
                "sources": [
                    {
                        "serviceAccountToken": {
                            "path": TOKEN_FILE,
                            "audience": plan.audience,
                            "expirationSeconds": TOKEN_EXPIRATION_SECONDS,
                        }
                    }
                ]
            },
        }

    def mutate(
        self, pod: Dict[str, Any], namespace: Optional[str] = None, dry_run: bool = False
    ) -> Dict[str, Any]:
        """
        Apply the proxy injection to a pod.

        Args:
            pod: Pod under admission
            namespace: Namespace of the admission request (defaults to the pod's)
            dry_run: Whether the admission request is a dry run

        Returns:
            The same pod object when nothing is injected, otherwise a mutated copy

        Raises:
            ValidationError: Admission must be denied
            NotFoundError: A referenced Identity or provider does not exist
            IdentityProviderError: A back-end lookup failed
        """
        namespace = namespace or (pod.get("metadata") or {}).get("namespace")
        pod_name = (pod.get("metadata") or {}).get("name") or (pod.get("metadata") or {}).get(
            "generateName", ""
        )
        if not namespace:
            raise ValidationError(f"Pod {pod_name} has no namespace")

        if parse_annotations(pod) is None:
            logger.debug("No proxy requested for pod %s/%s", namespace, pod_name)
            return pod
        if is_injected(pod):
            logger.info("Proxy already injected into pod %s/%s", namespace, pod_name)
            return pod

        plan = self.plan(pod, namespace)
        if plan.proxy_type == INGRESS and not dry_run:
            self._ensure_ingress_service_account(namespace)

        logger.info(
            "Injecting %s proxy into pod %s/%s (identity=%s, provider=%s, policy=%s)",
            plan.proxy_type,
            namespace,
            pod_name,
            plan.service_account,
            plan.provider_kind,
            plan.policy or "-",
        )
        mutated = copy.deepcopy(pod)
        spec = mutated.setdefault("spec", {})
        spec["containers"] = (spec.get("containers") or []) + [
            self._proxy_container(mutated, plan)
        ]
        spec["initContainers"] = (spec.get("initContainers") or []) + [
            self._init_container(plan)
        ]
        spec["volumes"] = (spec.get("volumes") or []) + [self._token_volume(plan)]
        spec["serviceAccountName"] = plan.service_account
        return mutated
