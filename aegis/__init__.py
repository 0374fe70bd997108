"""
aegis

Kubernetes operator issuing workload identities against external identity
back-ends and injecting the Aegis proxy sidecar into annotated pods.
"""

__version__ = "0.1.0"
