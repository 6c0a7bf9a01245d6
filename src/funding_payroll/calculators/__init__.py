"""Pure payroll calculation layer."""

from funding_payroll.calculators.advance_detector import needs_advance
from funding_payroll.calculators.allocation_resolver import (
    AllocationResolution,
    ResolutionWarning,
    resolve_active_allocations,
)
from funding_payroll.calculators.engine import (
    AllocationConfigurationError,
    CalculationResult,
    PayrollCalculator,
)
from funding_payroll.calculators.line_builder import PayrollLineBuilder
from funding_payroll.calculators.rules_provider import (
    ConfigurationMissingError,
    PayrollRules,
    RulesProvider,
)
from funding_payroll.calculators.tax_calculator import TaxCalculator

__all__ = [
    "AllocationConfigurationError",
    "AllocationResolution",
    "CalculationResult",
    "ConfigurationMissingError",
    "PayrollCalculator",
    "PayrollLineBuilder",
    "PayrollRules",
    "ResolutionWarning",
    "RulesProvider",
    "TaxCalculator",
    "needs_advance",
    "resolve_active_allocations",
]
