"""Reconciliation of Ec2Instance resources."""

from ec2op.controller.dispatcher import Dispatcher
from ec2op.controller.finalizer import FinalizerGuard
from ec2op.controller.reconciler import InstanceReconciler
from ec2op.controller.status import cleared, mark_unknown, project

__all__ = [
    "Dispatcher",
    "FinalizerGuard",
    "InstanceReconciler",
    "cleared",
    "mark_unknown",
    "project",
]
