"""HTTP API for the payroll batch core."""
