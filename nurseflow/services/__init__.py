"""
Core services for the application.

This package contains the schedule engine, dose history, the ward store,
due-dose alerting and drug information lookup.
"""

from .alert_evaluator import (
    AlertEvaluator,
    AlertEvaluatorConfig,
    NotificationDispatcher,
    NotificationPermission,
)
from .drug_info import DrugInfoError, DrugInfoService
from .result import Result
from .schedule_engine import (
    DoseTransition,
    MedicationValidationError,
    ScheduleError,
    UpcomingSort,
)
from .ward import PatientValidationError, WardService

__all__ = [
    "AlertEvaluator",
    "AlertEvaluatorConfig",
    "DoseTransition",
    "DrugInfoError",
    "DrugInfoService",
    "MedicationValidationError",
    "NotificationDispatcher",
    "NotificationPermission",
    "PatientValidationError",
    "Result",
    "ScheduleError",
    "UpcomingSort",
    "WardService",
]
