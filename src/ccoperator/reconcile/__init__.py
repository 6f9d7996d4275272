"""Reconciliation of CruiseControlOperation records."""

from ccoperator.reconcile.controller import (
    CruiseControlOperationReconciler,
    ReconcileRequest,
    ReconcileResult,
)
from ccoperator.reconcile.leases import DispatchLeases
from ccoperator.reconcile.predicates import should_reconcile
from ccoperator.reconcile.scheduling import Decision, DecisionKind, decide

__all__ = [
    "CruiseControlOperationReconciler",
    "Decision",
    "DecisionKind",
    "DispatchLeases",
    "ReconcileRequest",
    "ReconcileResult",
    "decide",
    "should_reconcile",
]
