"""FX snapshot manager - requests and holds time-boxed FX rate locks.

A batch carries at most one current snapshot. Recalculation always produces
a fresh unlocked snapshot that supersedes the previous one; locking stamps
``locked_at`` once. Expiry is never timer driven: callers compare the lock
window against the clock whenever validity matters.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Sequence

from payroll_batch.clock import Clock, utc_now
from payroll_batch.config import FXConfig
from payroll_batch.errors import (
    AlreadyLockedError,
    BatchNotEditableError,
    LockedSnapshotImmutableError,
    ProviderUnavailableError,
    StaleSnapshotError,
)
from payroll_batch.money import FXQuote, Money
from payroll_batch.providers.base import FXRateProvider
from payroll_batch.services.state_machine import BatchStateMachine
from payroll_batch.types import EventActor, FXSnapshot, PayrollBatch

logger = logging.getLogger(__name__)


class FXSnapshotManager:
    """Service for recalculating, locking and switching FX snapshots.

    Operations:
    - recalculate: fetch fresh quotes into a new unlocked snapshot
    - lock: freeze the current snapshot for ``ttl_seconds``
    - is_expired: pure expiry predicate
    - switch_provider: recalculate from the next configured provider
    """

    def __init__(
        self,
        providers: Sequence[FXRateProvider],
        config: FXConfig | None = None,
        clock: Clock = utc_now,
    ):
        if not providers:
            raise ValueError("At least one FX provider is required")
        names = [p.provider_name for p in providers]
        if len(names) != len(set(names)):
            raise ValueError("FX provider names must be unique")
        self.providers = list(providers)
        self.config = config or FXConfig()
        self.clock = clock

    def get_provider(self, name: str | None = None) -> FXRateProvider:
        """Get a provider by name, defaulting to the primary."""
        if name is None:
            return self.providers[0]
        for provider in self.providers:
            if provider.provider_name == name:
                return provider
        raise ValueError(f"Unknown FX provider '{name}'")

    def recalculate(
        self,
        batch: PayrollBatch,
        base_currency: str | None = None,
        target_currencies: Sequence[str] | None = None,
        provider: str | None = None,
    ) -> FXSnapshot:
        """Fetch fresh quotes and install them as the batch's unlocked snapshot.

        Targets default to every payee currency other than the base. An
        actively locked snapshot cannot be replaced. On provider failure
        the previous snapshot stays in place.
        """
        self._require_fx_mutable(batch, "recalculate FX rates")
        now = self.clock()
        current = batch.fx_snapshot
        if current is not None and current.is_lock_active(now):
            raise LockedSnapshotImmutableError(current.id, current.seconds_remaining(now) or 0)

        base = base_currency or self.config.base_currency
        if target_currencies is None:
            target_currencies = sorted({p.currency for p in batch.payees})
        targets = [c for c in dict.fromkeys(target_currencies) if c != base]

        source = self.get_provider(provider)
        quotes = self._fetch(source, base, targets)

        snapshot = FXSnapshot(
            id=f"fx-{uuid.uuid4().hex[:12]}",
            base_currency=base,
            quotes=tuple(quotes),
            provider=source.provider_name,
            created_at=now,
            variance_bps=self._variance_bps(current, quotes, base),
        )
        batch.fx_snapshot = snapshot
        self._stamp_payees(batch, snapshot)

        batch.append_event(
            now,
            f"FX snapshot {snapshot.id} calculated via {source.provider_name} "
            f"({len(quotes)} quote(s), base {base})",
            actor=EventActor.SYSTEM,
            code="FXRecalculated",
        )
        logger.info("Batch %s: FX snapshot %s from %s", batch.id, snapshot.id, source.provider_name)
        return snapshot

    def lock(
        self,
        batch: PayrollBatch,
        snapshot: FXSnapshot | str | None = None,
        ttl_seconds: int | None = None,
        actor_id: str | None = None,
    ) -> FXSnapshot:
        """Lock the batch's current snapshot, stamping ``locked_at = now``.

        ``snapshot`` identifies what the caller believes is current; if the
        batch has moved on, StaleSnapshotError is raised. A snapshot can be
        locked once; after expiry a new snapshot must be calculated.
        """
        self._require_fx_mutable(batch, "lock FX rates")
        current = batch.fx_snapshot
        requested_id = snapshot.id if isinstance(snapshot, FXSnapshot) else snapshot

        if current is None:
            raise StaleSnapshotError(requested_id or "<none>", None)
        if requested_id is not None and requested_id != current.id:
            raise StaleSnapshotError(requested_id, current.id)
        if current.is_locked:
            raise AlreadyLockedError(current.id)

        ttl = self.config.default_lock_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl < 1 or ttl > self.config.max_lock_ttl_seconds:
            raise ValueError(
                f"ttl_seconds must be between 1 and {self.config.max_lock_ttl_seconds}"
            )

        now = self.clock()
        locked = current.locked(now, ttl)
        batch.fx_snapshot = locked
        batch.append_event(
            now,
            f"FX rates locked on snapshot {locked.id} for {ttl}s "
            f"(expires {locked.expires_at.isoformat()})",
            actor=EventActor.USER if actor_id else EventActor.SYSTEM,
            actor_id=actor_id,
            code="FXLocked",
        )
        return locked

    @staticmethod
    def is_expired(snapshot: FXSnapshot, now: datetime) -> bool:
        """True once ``locked_at + lock_ttl_seconds <= now``. Unlocked snapshots never expire."""
        return snapshot.is_expired(now)

    def switch_provider(
        self,
        batch: PayrollBatch,
        snapshot: FXSnapshot | str | None = None,
    ) -> FXSnapshot:
        """Discard the current snapshot and recalculate from the next provider."""
        self._require_fx_mutable(batch, "switch FX provider")
        current = batch.fx_snapshot
        requested_id = snapshot.id if isinstance(snapshot, FXSnapshot) else snapshot

        if current is None:
            raise StaleSnapshotError(requested_id or "<none>", None)
        if requested_id is not None and requested_id != current.id:
            raise StaleSnapshotError(requested_id, current.id)

        now = self.clock()
        if current.is_lock_active(now):
            raise LockedSnapshotImmutableError(current.id, current.seconds_remaining(now) or 0)

        alternate = self._next_provider(current.provider)
        batch.append_event(
            now,
            f"Switching FX provider from {current.provider} to {alternate.provider_name}",
            actor=EventActor.USER,
            code="FXProviderSwitched",
        )
        return self.recalculate(
            batch,
            base_currency=current.base_currency,
            target_currencies=[q.currency for q in current.quotes],
            provider=alternate.provider_name,
        )

    def _next_provider(self, current_name: str) -> FXRateProvider:
        if len(self.providers) < 2:
            raise ProviderUnavailableError(current_name, "no alternate provider configured")
        names = [p.provider_name for p in self.providers]
        position = names.index(current_name) if current_name in names else -1
        return self.providers[(position + 1) % len(self.providers)]

    def _fetch(
        self, provider: FXRateProvider, base: str, targets: list[str]
    ) -> list[FXQuote]:
        try:
            quotes = list(provider.get_rates(base, targets))
        except ProviderUnavailableError:
            raise
        except (ConnectionError, TimeoutError, OSError) as e:
            raise ProviderUnavailableError(provider.provider_name, str(e)) from e

        returned = {q.currency for q in quotes}
        missing = [c for c in targets if c not in returned]
        if missing:
            raise ProviderUnavailableError(
                provider.provider_name, f"no quote returned for {', '.join(missing)}"
            )
        # Keep only what was asked for, in request order
        by_currency = {q.currency: q for q in quotes}
        return [by_currency[c] for c in targets]

    @staticmethod
    def _variance_bps(
        previous: FXSnapshot | None, quotes: list[FXQuote], base: str
    ) -> int | None:
        """Mean signed drift of the new rates against the superseded snapshot."""
        if previous is None or previous.base_currency != base:
            return None
        drifts = []
        for quote in quotes:
            old = previous.quote_for(quote.currency)
            if old is not None:
                drifts.append((quote.rate - old.rate) / old.rate * Decimal("10000"))
        if not drifts:
            return None
        return int((sum(drifts) / len(drifts)).to_integral_value())

    @staticmethod
    def _stamp_payees(batch: PayrollBatch, snapshot: FXSnapshot) -> None:
        """Record each payee's proposed rate and fee from the snapshot."""
        for payee in batch.payees:
            if payee.currency == snapshot.base_currency:
                payee.proposed_fx_rate = Decimal("1")
                payee.fx_fee = None
                continue
            quote = snapshot.quote_for(payee.currency)
            if quote is None:
                payee.proposed_fx_rate = None
                payee.fx_fee = None
            else:
                payee.proposed_fx_rate = quote.rate
                payee.fx_fee = Money(quote.fee, snapshot.base_currency)

    @staticmethod
    def _require_fx_mutable(batch: PayrollBatch, operation: str) -> None:
        if not BatchStateMachine.can_change_fx(batch.status):
            raise BatchNotEditableError(batch.id, batch.status.value, operation)
