"""
aegis.config

Operator configuration loaded from environment variables.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigurationError

# Constants
DEFAULT_PROXY_IMAGE = "registry.localhost:5000/aegis-proxy:1.1"
DEFAULT_IPTABLES_IMAGE = "registry.localhost:5000/aegis-iptables:1.0"
DEFAULT_VAULT_TOKEN_PATH = "/var/run/secrets/tokens/token"
DEFAULT_AZURE_TOKEN_PATH = "/var/run/secrets/tokens/azure_token"
DEFAULT_AWS_TOKEN_PATH = "/var/run/secrets/tokens/aws_token"
DEFAULT_SA_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
DEFAULT_WEBHOOK_PORT = 9443
DEFAULT_WEBHOOK_CONFIG_NAME = "aegis.aegisproxy.io"
DEFAULT_REQUEUE_BASE_DELAY = 0.5
DEFAULT_REQUEUE_MAX_DELAY = 60.0
DEFAULT_PROVIDER_DELETE_REQUEUE = 5.0
DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_required_env(key: str) -> str:
    """Get a required environment variable or raise ConfigurationError."""
    value = os.environ.get(key)
    if value is None or value == "":
        raise ConfigurationError(f'Required environment variable: "{key}" is not set')
    return value


def get_optional_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get an optional environment variable with optional default."""
    return os.environ.get(key, default)


def _get_float_env(key: str, default: float) -> float:
    value = get_optional_env(key)
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
    except ValueError as e:
        raise ConfigurationError(
            f'Environment variable "{key}" must be a number, got "{value}"'
        ) from e
    if parsed < 0:
        raise ConfigurationError(f'Environment variable "{key}" must not be negative')
    return parsed


def _get_int_env(key: str, default: int) -> int:
    value = get_optional_env(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(
            f'Environment variable "{key}" must be an integer, got "{value}"'
        ) from e


def is_running_in_cluster() -> bool:
    """Check if running inside a Kubernetes cluster."""
    return bool(os.getenv("KUBERNETES_SERVICE_HOST"))


@dataclass(frozen=True)
class OperatorConfig:
    """Process-wide operator settings."""

    proxy_image: str = DEFAULT_PROXY_IMAGE
    iptables_image: str = DEFAULT_IPTABLES_IMAGE
    vault_token_path: str = DEFAULT_VAULT_TOKEN_PATH
    azure_token_path: str = DEFAULT_AZURE_TOKEN_PATH
    aws_token_path: str = DEFAULT_AWS_TOKEN_PATH
    sa_token_path: str = DEFAULT_SA_TOKEN_PATH
    webhook_host: Optional[str] = None
    webhook_port: int = DEFAULT_WEBHOOK_PORT
    webhook_cert_file: Optional[str] = None
    webhook_key_file: Optional[str] = None
    webhook_config_name: str = DEFAULT_WEBHOOK_CONFIG_NAME
    requeue_base_delay: float = DEFAULT_REQUEUE_BASE_DELAY
    requeue_max_delay: float = DEFAULT_REQUEUE_MAX_DELAY
    provider_delete_requeue: float = DEFAULT_PROVIDER_DELETE_REQUEUE
    log_level: str = DEFAULT_LOG_LEVEL


def load_config() -> OperatorConfig:
    """
    Build the operator configuration from the environment.

    Returns:
        OperatorConfig populated from AEGIS_* variables, falling back to defaults

    Raises:
        ConfigurationError: If a value cannot be parsed or the TLS pair is incomplete
    """
    cert_file = get_optional_env("AEGIS_WEBHOOK_CERT_FILE") or None
    key_file = get_optional_env("AEGIS_WEBHOOK_KEY_FILE") or None
    if bool(cert_file) != bool(key_file):
        raise ConfigurationError(
            "AEGIS_WEBHOOK_CERT_FILE and AEGIS_WEBHOOK_KEY_FILE must be set together"
        )

    base_delay = _get_float_env("AEGIS_REQUEUE_BASE_DELAY", DEFAULT_REQUEUE_BASE_DELAY)
    max_delay = _get_float_env("AEGIS_REQUEUE_MAX_DELAY", DEFAULT_REQUEUE_MAX_DELAY)
    if max_delay < base_delay:
        raise ConfigurationError(
            "AEGIS_REQUEUE_MAX_DELAY must be greater than or equal to AEGIS_REQUEUE_BASE_DELAY"
        )

    log_level = get_optional_env("AEGIS_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f'Invalid log level: "{log_level}"')

    return OperatorConfig(
        proxy_image=get_optional_env("AEGIS_PROXY_IMAGE", DEFAULT_PROXY_IMAGE),
        iptables_image=get_optional_env("AEGIS_IPTABLES_IMAGE", DEFAULT_IPTABLES_IMAGE),
        vault_token_path=get_optional_env(
            "AEGIS_VAULT_TOKEN_PATH", DEFAULT_VAULT_TOKEN_PATH
        ),
        azure_token_path=get_optional_env(
            "AEGIS_AZURE_TOKEN_PATH", DEFAULT_AZURE_TOKEN_PATH
        ),
        aws_token_path=get_optional_env("AEGIS_AWS_TOKEN_PATH", DEFAULT_AWS_TOKEN_PATH),
        sa_token_path=get_optional_env("AEGIS_SA_TOKEN_PATH", DEFAULT_SA_TOKEN_PATH),
        webhook_host=get_optional_env("AEGIS_WEBHOOK_HOST") or None,
        webhook_port=_get_int_env("AEGIS_WEBHOOK_PORT", DEFAULT_WEBHOOK_PORT),
        webhook_cert_file=cert_file,
        webhook_key_file=key_file,
        webhook_config_name=get_optional_env(
            "AEGIS_WEBHOOK_CONFIG_NAME", DEFAULT_WEBHOOK_CONFIG_NAME
        ),
        requeue_base_delay=base_delay,
        requeue_max_delay=max_delay,
        provider_delete_requeue=_get_float_env(
            "AEGIS_PROVIDER_DELETE_REQUEUE", DEFAULT_PROVIDER_DELETE_REQUEUE
        ),
        log_level=log_level,
    )


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Configure root logging for the operator process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
