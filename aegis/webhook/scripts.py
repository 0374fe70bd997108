"""
aegis.webhook.scripts

Traffic redirection script templates run by the injected init container.

Templates are shell scripts with positional %s placeholders. Each proxy type
takes a fixed parameter tuple:

    egress          (uid, outbound port)
    ingress         (uid, inbound port, ingress port)
    ingress-egress  (uid, inbound port, outbound port, ingress port)
"""

from dataclasses import dataclass
from importlib import resources

from ..exceptions import ConfigurationError, ValidationError

EGRESS = "egress"
INGRESS = "ingress"
INGRESS_EGRESS = "ingress-egress"

PROXY_TYPES = (EGRESS, INGRESS, INGRESS_EGRESS)

TEMPLATE_FILES = {
    EGRESS: "iptables-egress.sh",
    INGRESS: "iptables-ingress.sh",
    INGRESS_EGRESS: "iptables.sh",
}

ARITY = {
    EGRESS: 2,
    INGRESS: 3,
    INGRESS_EGRESS: 4,
}


def _check_arity(proxy_type: str, template: str) -> None:
    try:
        template % (("0",) * ARITY[proxy_type])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Redirection template for {proxy_type} must take exactly "
            f"{ARITY[proxy_type]} parameters: {e}"
        ) from e


@dataclass(frozen=True)
class RedirectionScripts:
    """The three redirection templates, loaded once and shared read-only."""

    egress: str
    ingress: str
    ingress_egress: str

    def __post_init__(self):
        for proxy_type in PROXY_TYPES:
            _check_arity(proxy_type, self.template(proxy_type))

    @classmethod
    def load(cls) -> "RedirectionScripts":
        """Load the templates shipped with the package."""
        root = resources.files(__package__).joinpath("scripts")
        return cls(
            egress=root.joinpath(TEMPLATE_FILES[EGRESS]).read_text(encoding="utf-8"),
            ingress=root.joinpath(TEMPLATE_FILES[INGRESS]).read_text(encoding="utf-8"),
            ingress_egress=root.joinpath(TEMPLATE_FILES[INGRESS_EGRESS]).read_text(
                encoding="utf-8"
            ),
        )

    def template(self, proxy_type: str) -> str:
        if proxy_type == EGRESS:
            return self.egress
        if proxy_type == INGRESS:
            return self.ingress
        if proxy_type == INGRESS_EGRESS:
            return self.ingress_egress
        raise ValidationError(f"Unknown proxy type: {proxy_type}")

    def render(
        self,
        proxy_type: str,
        uid: int,
        inbound_port: int,
        outbound_port: int,
        ingress_port: str,
    ) -> str:
        """Instantiate the template for a proxy type."""
        if proxy_type == EGRESS:
            params = (uid, outbound_port)
        elif proxy_type == INGRESS:
            params = (uid, inbound_port, ingress_port)
        elif proxy_type == INGRESS_EGRESS:
            params = (uid, inbound_port, outbound_port, ingress_port)
        else:
            raise ValidationError(f"Unknown proxy type: {proxy_type}")
        return self.template(proxy_type) % tuple(str(p) for p in params)
