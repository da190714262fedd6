"""
Controllers - Reconcilers for experiments, schedules and workflows

Components:
- ExperimentReconciler: Applies or recovers every record of an experiment
- DesiredPhaseReconciler: Decides whether an experiment should be running
- SchedulePauseReconciler: Copies a schedule's pause flag onto its active jobs
- FinalizerReconciler: Holds deleted experiments until every record is recovered
- ErrorHandler / retry_on_conflict: Error policy and optimistic-concurrency retry
"""
from .desiredphase import DesiredPhaseReconciler, compute_desired_phase
from .error_handler import (
    DEFAULT_BACKOFF, DEFAULT_RETRY, ErrorCategory, ErrorContext, ErrorHandler, ErrorSeverity, RetryConfig,
    get_error_handler, retry_on_conflict
)
from .events import EventRecorder, KubeEventRecorder
from .experiment import ExperimentReconciler, planned_action
from .finalizer import FinalizerReconciler, cleanup_forced
from .pause import ActiveLister, SchedulePauseReconciler

__all__ = [
    'ActiveLister',
    'DEFAULT_BACKOFF',
    'DEFAULT_RETRY',
    'DesiredPhaseReconciler',
    'ErrorCategory',
    'ErrorContext',
    'ErrorHandler',
    'ErrorSeverity',
    'EventRecorder',
    'ExperimentReconciler',
    'FinalizerReconciler',
    'KubeEventRecorder',
    'RetryConfig',
    'SchedulePauseReconciler',
    'cleanup_forced',
    'compute_desired_phase',
    'get_error_handler',
    'planned_action',
    'retry_on_conflict',
]
