"""
aegis.controller.result

Outcome of one reconcile pass.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Result:
    """
    Tells the caller what to do with an object after a pass.

    requeue runs the pass again right away; requeue_after retries it after a
    fixed delay. A pass that raises is retried with exponential backoff.
    """

    requeue: bool = False
    requeue_after: Optional[float] = None
