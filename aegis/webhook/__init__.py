"""
aegis.webhook

Pod admission mutation for the Aegis proxy sidecar.
"""

from .mutation import InjectionPlan, PodMutator, is_injected, parse_annotations
from .scripts import EGRESS, INGRESS, INGRESS_EGRESS, RedirectionScripts

__all__ = [
    "InjectionPlan",
    "PodMutator",
    "RedirectionScripts",
    "is_injected",
    "parse_annotations",
    "EGRESS",
    "INGRESS",
    "INGRESS_EGRESS",
]
