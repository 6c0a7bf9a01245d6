"""HTTP API for bulk payroll, single calculations and health checks."""
