"""
aegis.controller

Reconcilers for Identity and provider resources.
"""

from .identity_controller import IdentityReconciler
from .provider_controller import ProviderReconciler, kubernetes_issuer_status
from .result import Result

__all__ = [
    "IdentityReconciler",
    "ProviderReconciler",
    "kubernetes_issuer_status",
    "Result",
]
