"""Static FX rate provider for local development and testing.

Replace with a real market-data adapter for production.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Sequence

from payroll_batch.errors import ProviderUnavailableError
from payroll_batch.money import FXQuote


class StaticRateProvider:
    """Stub FX provider serving rates from an in-memory table.

    Rates are quote-currency per one USD. Other base currencies are derived
    by crossing through USD.
    """

    DEFAULT_RATES: dict[str, Decimal] = {
        "USD": Decimal("1"),
        "EUR": Decimal("0.92"),
        "GBP": Decimal("0.79"),
        "PHP": Decimal("56.10"),
        "INR": Decimal("83.20"),
        "NOK": Decimal("10.70"),
        "SEK": Decimal("10.45"),
        "MXN": Decimal("17.05"),
    }

    def __init__(
        self,
        provider_name: str = "primary",
        rates: Mapping[str, Decimal] | None = None,
        fee: Decimal = Decimal("0"),
        available: bool = True,
    ):
        """Initialize stub provider.

        Args:
            provider_name: Name recorded on snapshots built from this source.
            rates: Override table of USD-based rates.
            fee: Flat fee attached to every quote.
            available: If False, every call raises ProviderUnavailableError.
        """
        self.provider_name = provider_name
        self.rates = dict(rates) if rates is not None else dict(self.DEFAULT_RATES)
        self.rates.setdefault("USD", Decimal("1"))
        self.fee = fee
        self.available = available
        self.calls = 0

    def get_rates(self, base_currency: str, targets: Sequence[str]) -> list[FXQuote]:
        """Return stub quotes."""
        self.calls += 1
        if not self.available:
            raise ProviderUnavailableError(self.provider_name, "stub marked unavailable")

        if base_currency not in self.rates:
            raise ProviderUnavailableError(
                self.provider_name, f"no rates for base currency {base_currency}"
            )
        base_rate = self.rates[base_currency]

        quotes = []
        for currency in targets:
            if currency not in self.rates:
                raise ProviderUnavailableError(
                    self.provider_name, f"no rate for {currency}"
                )
            quotes.append(
                FXQuote(
                    currency=currency,
                    rate=(self.rates[currency] / base_rate).quantize(Decimal("0.000001")),
                    fee=self.fee,
                )
            )
        return quotes
