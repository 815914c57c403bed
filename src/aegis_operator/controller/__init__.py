"""Controller: reconcile AegisWatch objects through detect, diagnose, remediate."""

from aegis_operator.controller.manager import ControllerManager, build_manager
from aegis_operator.controller.queue import WorkQueue
from aegis_operator.controller.reconciler import AegisWatchReconciler, ReconcileResult

__all__ = [
    "AegisWatchReconciler",
    "ControllerManager",
    "ReconcileResult",
    "WorkQueue",
    "build_manager",
]
