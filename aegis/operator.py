"""
aegis.operator

kopf entry point: registers the reconcilers as kopf resource handlers and
wires the pod admission webhook.

Each handler runs a reconciler until it stops asking for an immediate
requeue. Delayed requeues and failures are handed back to kopf as
TemporaryError so kopf schedules the retry; kopf never runs two handlers
for the same object at once.
"""

import argparse
import logging
from typing import Any, Callable, Dict, List, Optional

import kopf

from .config import OperatorConfig, configure_logging, load_config
from .controller import IdentityReconciler, ProviderReconciler, Result, kubernetes_issuer_status
from .exceptions import AegisError
from .identity.factory import ProviderResolver
from .identity.token import ProjectedToken
from .kube import ResourceStore, load_kube_config
from .resources import GROUP, IDENTITY, KUBERNETES_PROVIDER, PROVIDER_KINDS, VERSION
from .webhook import PodMutator, RedirectionScripts

logger = logging.getLogger(__name__)

WEBHOOK_ID = "aegis-pod-injector"

Reconcile = Callable[[str, str], Result]


def build_reconcilers(config: OperatorConfig, store: ResourceStore) -> Dict[str, Reconcile]:
    """Create the reconcile function of every resource kind, keyed by plural name."""
    resolver = ProviderResolver(store, config)
    reconcilers: Dict[str, Reconcile] = {
        IDENTITY.plural: IdentityReconciler(store, resolver).reconcile
    }
    for kind in PROVIDER_KINDS:
        status_hook = None
        if kind == KUBERNETES_PROVIDER:
            status_hook = kubernetes_issuer_status(ProjectedToken(config.sa_token_path))
        reconciler = ProviderReconciler(
            store,
            kind,
            status_hook=status_hook,
            delete_requeue=config.provider_delete_requeue,
        )
        reconcilers[kind.plural] = reconciler.reconcile
    return reconcilers


def backoff_delay(config: OperatorConfig, retry: int) -> float:
    """Exponential retry delay for a failed pass, capped at requeue_max_delay."""
    return min(config.requeue_base_delay * (2 ** retry), config.requeue_max_delay)


def run_reconcile(
    reconcile: Reconcile,
    config: OperatorConfig,
    namespace: str,
    name: str,
    retry: int = 0,
) -> None:
    """
    Reconcile one object on behalf of a kopf handler.

    Args:
        reconcile: Reconcile function of the object's kind
        config: Operator configuration (retry delays)
        namespace: Object namespace
        name: Object name
        retry: Number of retries kopf already made for this handler

    Raises:
        kopf.TemporaryError: When the pass failed or asked to be requeued later
    """
    while True:
        try:
            result = reconcile(namespace, name)
        except AegisError as e:
            delay = backoff_delay(config, retry)
            logger.error(
                "Reconcile of %s/%s failed, retrying in %.1fs: %s", namespace, name, delay, e
            )
            raise kopf.TemporaryError(str(e), delay=delay) from e
        if result.requeue_after is not None:
            raise kopf.TemporaryError(
                f"{namespace}/{name} requeued", delay=result.requeue_after
            )
        if not result.requeue:
            return


def _webhook_server(config: OperatorConfig) -> kopf.WebhookServer:
    kwargs: Dict[str, Any] = {"port": config.webhook_port}
    if config.webhook_host:
        kwargs["host"] = config.webhook_host
    if config.webhook_cert_file:
        kwargs["certfile"] = config.webhook_cert_file
        kwargs["pkeyfile"] = config.webhook_key_file
    return kopf.WebhookServer(**kwargs)


@kopf.on.startup()
async def startup(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Build the operator components shared by the handlers."""
    config = load_config()
    configure_logging(config.log_level)
    load_kube_config()

    settings.posting.level = logging.WARNING
    settings.admission.server = _webhook_server(config)
    settings.admission.managed = config.webhook_config_name

    store = ResourceStore()
    memo.config = config
    memo.mutator = PodMutator(
        store,
        ProviderResolver(store, config),
        RedirectionScripts.load(),
        proxy_image=config.proxy_image,
        iptables_image=config.iptables_image,
    )
    memo.reconcilers = build_reconcilers(config, store)
    logger.info("Aegis operator started with %d reconcilers", len(memo.reconcilers))


def _register_reconcile_handlers(plural: str) -> None:
    # finalizers are managed by the reconcilers, kopf must not add its own
    @kopf.on.resume(GROUP, VERSION, plural, id=f"{plural}-reconcile")
    @kopf.on.create(GROUP, VERSION, plural, id=f"{plural}-reconcile")
    @kopf.on.update(GROUP, VERSION, plural, id=f"{plural}-reconcile")
    @kopf.on.delete(GROUP, VERSION, plural, id=f"{plural}-finalize", optional=True)
    def reconcile_handler(
        namespace: Optional[str], name: Optional[str], memo: kopf.Memo, retry: int = 0, **_: Any
    ) -> None:
        if not namespace or not name:
            return
        run_reconcile(memo.reconcilers[plural], memo.config, namespace, name, retry)


for _plural in [IDENTITY.plural] + [kind.plural for kind in PROVIDER_KINDS]:
    _register_reconcile_handlers(_plural)


@kopf.on.mutate(
    "v1", "pods", id=WEBHOOK_ID, operations=["CREATE", "UPDATE"], side_effects=True
)
def mutate_pod(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    namespace: Optional[str] = None,
    dryrun: bool = False,
    **_: Any,
) -> None:
    """Inject the Aegis proxy into annotated pods."""
    pod = dict(body)
    try:
        mutated = memo.mutator.mutate(pod, namespace=namespace, dry_run=dryrun)
    except AegisError as e:
        logger.error("Denying pod %s/%s: %s", namespace, body.get("metadata", {}).get("name"), e)
        raise kopf.AdmissionError(str(e))

    if mutated is pod:
        return
    for field in ("containers", "initContainers", "volumes", "serviceAccountName"):
        patch.spec[field] = mutated["spec"][field]


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="aegis-operator",
        description="Workload identity and proxy injection operator",
    )
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument(
        "-n",
        "--namespace",
        action="append",
        default=[],
        help="Namespace to watch (repeatable)",
    )
    scope.add_argument(
        "-A",
        "--all-namespaces",
        action="store_true",
        help="Watch all namespaces (default when no namespace is given)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Run the operator until interrupted."""
    args = _parse_args(argv)
    configure_logging("DEBUG" if args.verbose else load_config().log_level)
    clusterwide = args.all_namespaces or not args.namespace
    kopf.run(
        clusterwide=clusterwide,
        namespaces=None if clusterwide else args.namespace,
        memo=kopf.Memo(reconcilers={}),
        standalone=True,
    )


if __name__ == "__main__":
    main()
