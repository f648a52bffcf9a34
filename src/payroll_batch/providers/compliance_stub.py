"""Required-fields compliance evaluator for development and testing.

Real country law lives in the compliance service; this stub only checks
that the fields a country needs are present.
"""

from __future__ import annotations

from typing import Mapping

from payroll_batch.providers.base import ComplianceResult
from payroll_batch.types import PayrollPayee


class RequiredFieldsEvaluator:
    """Marks a payee ready when every required field for its country is set."""

    DEFAULT_RULES: dict[str, tuple[str, ...]] = {
        "US": ("bank_account", "tax_id"),
        "PH": ("bank_account", "tax_id"),
        "IN": ("bank_account", "tax_id"),
        "NO": ("bank_account",),
    }

    FIELD_LABELS = {
        "bank_account": "bank details",
        "tax_id": "tax identifier",
    }

    def __init__(
        self,
        rules: Mapping[str, tuple[str, ...]] | None = None,
        default_fields: tuple[str, ...] = ("bank_account",),
    ):
        self.rules = dict(rules) if rules is not None else dict(self.DEFAULT_RULES)
        self.default_fields = default_fields

    def evaluate(self, payee: PayrollPayee) -> ComplianceResult:
        required = self.rules.get(payee.country_code, self.default_fields)
        blocking = [
            f"Missing {self.FIELD_LABELS.get(name, name)} for {payee.country_code}"
            for name in required
            if not getattr(payee, name, None)
        ]
        warnings = []
        if payee.country_code not in self.rules:
            warnings.append(
                f"No country rules for {payee.country_code}; default checks applied"
            )
        if payee.net_pay.is_negative:
            blocking.append("Net pay is negative after adjustments")
        return ComplianceResult(
            ready=not blocking,
            blocking_issues=blocking,
            warnings=warnings,
        )
