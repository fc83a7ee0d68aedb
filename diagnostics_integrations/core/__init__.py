"""
Core diagnostics logic: service classification, deal row reconciliation,
device resolution and the submission workflow.
"""

from .classifier import ServiceClassifier
from .reconciler import RowReconciler, ReconcileOutcome
from .resolver import DeviceResolver
from .diagnostics import DiagnosticsOrchestrator

__all__ = [
    'ServiceClassifier',
    'RowReconciler',
    'ReconcileOutcome',
    'DeviceResolver',
    'DiagnosticsOrchestrator',
]
