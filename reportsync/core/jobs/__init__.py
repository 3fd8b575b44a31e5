"""Job status tracking: reconciliation, polling and the job list projection."""

from .polling import PollingFallback
from .projector import JobSetProjector
from .reconciler import JobStatusReconciler

__all__ = [
    "JobStatusReconciler",
    "PollingFallback",
    "JobSetProjector",
]
