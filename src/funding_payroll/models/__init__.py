"""SQLAlchemy ORM models for the funding payroll engine."""

from funding_payroll.models.base import Base, TimestampMixin, UpdatedAtMixin
from funding_payroll.models.employee import (
    Employee,
    Employment,
    FundingAllocation,
    ProbationRecord,
)
from funding_payroll.models.organization import Grant, GrantItem
from funding_payroll.models.payroll import (
    BulkPayrollBatch,
    BulkPayrollBatchError,
    InterOrganizationAdvance,
    Payroll,
)
from funding_payroll.models.rules import BenefitSetting, TaxBracket, TaxSetting

__all__ = [
    "Base",
    "TimestampMixin",
    "UpdatedAtMixin",
    # Employees
    "Employee",
    "Employment",
    "FundingAllocation",
    "ProbationRecord",
    # Funding sources
    "Grant",
    "GrantItem",
    # Rules
    "BenefitSetting",
    "TaxBracket",
    "TaxSetting",
    # Payroll
    "BulkPayrollBatch",
    "BulkPayrollBatchError",
    "InterOrganizationAdvance",
    "Payroll",
]
