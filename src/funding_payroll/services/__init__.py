"""Payroll services: batch processing, probation and persistence."""

from funding_payroll.services.batch_processor import (
    BatchNotFoundError,
    BulkPayrollProcessor,
    PersistenceError,
)
from funding_payroll.services.batch_service import (
    BulkPayrollService,
    PayrollValidationError,
    parse_filters,
    parse_period,
)
from funding_payroll.services.job_queue import (
    BulkPayrollJob,
    InProcessJobQueue,
    JobQueue,
    QueueUnavailableError,
)
from funding_payroll.services.notifications import (
    BatchNotification,
    LoggingNotificationSink,
    NotificationSink,
)
from funding_payroll.services.payroll_writer import PayrollWriter
from funding_payroll.services.probation_service import (
    ProbationService,
    ProbationTransitionError,
    ProbationTransitionService,
)
from funding_payroll.services.state_machine import (
    BatchStateMachine,
    BatchStatus,
    InvalidTransitionError,
)

__all__ = [
    "BatchNotFoundError",
    "BatchNotification",
    "BatchStateMachine",
    "BatchStatus",
    "BulkPayrollJob",
    "BulkPayrollProcessor",
    "BulkPayrollService",
    "InProcessJobQueue",
    "InvalidTransitionError",
    "JobQueue",
    "LoggingNotificationSink",
    "NotificationSink",
    "PayrollValidationError",
    "PayrollWriter",
    "PersistenceError",
    "ProbationService",
    "ProbationTransitionError",
    "ProbationTransitionService",
    "QueueUnavailableError",
    "parse_filters",
    "parse_period",
]
