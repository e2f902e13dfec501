"""Repository for the per-seller, per-period aggregate records."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import ZERO, PeriodStatus
from .errors import NotFoundError
from .periods import period_type_of


def record_id_for(seller_id: str, period: str) -> str:
    """Return the composite identifier of the ``(seller_id, period)`` record."""

    return f"{seller_id}:{period}"


class PeriodRecordStore:
    """Workbook-backed store of :class:`~commission_ledger.data_manager.PeriodRecordRow`.

    Records are addressed by their composite ``(seller_id, period)`` key and
    are never deleted. Rows are cached per store instance and the cache is
    dropped after every write.
    """

    def __init__(self, workbook: Workbook):
        self._workbook = workbook
        self._cache: Dict[str, Any] = {}

    def find(self, seller_id: str, period: str) -> Optional[data_manager.PeriodRecordRow]:
        """Return the record for ``(seller_id, period)`` or ``None``."""

        return self._ensure_cache()["by_id"].get(record_id_for(seller_id, period))

    def get(self, seller_id: str, period: str) -> data_manager.PeriodRecordRow:
        """Return the record for ``(seller_id, period)``.

        Raises:
            NotFoundError: If the period has never received an entry.
        """

        record = self.find(seller_id, period)
        if record is None:
            log.warning("Period lookup failed for seller '%s' period '%s'", seller_id, period)
            raise NotFoundError("period", record_id_for(seller_id, period))
        return record

    def list_records(self, seller_id: Optional[str] = None) -> List[data_manager.PeriodRecordRow]:
        """Return records ordered by seller then period, optionally for one seller."""

        records = self._ensure_cache()["all"]
        if seller_id is not None:
            records = [record for record in records if record.seller_id == seller_id]
        return sorted(records, key=lambda record: (record.seller_id, record.period))

    def prior_balance_for(self, seller_id: str, period: str) -> Decimal:
        """Return the balance carried into ``period`` from the preceding one.

        The preceding period is the most recent existing record of the same
        seller and period type whose key sorts before ``period``. Without one
        the carried balance is zero.
        """

        period_type = period_type_of(period).value
        earlier = [
            record
            for record in self._ensure_cache()["all"]
            if record.seller_id == seller_id
            and record.period_type == period_type
            and record.period < period
        ]
        if not earlier:
            return ZERO
        latest = max(earlier, key=lambda record: record.period)
        return latest.balance

    def get_or_create(self, seller_id: str, period: str, *, when: datetime) -> data_manager.PeriodRecordRow:
        """Return the ``(seller_id, period)`` record, creating it when absent.

        New records start ``open`` with zero totals; ``prior_balance`` is
        pulled from :meth:`prior_balance_for`. Callers recalculate the record
        right after creating it so the carried balance flows into the totals.
        """

        existing = self.find(seller_id, period)
        if existing is not None:
            return existing

        prior_balance = self.prior_balance_for(seller_id, period)
        record = data_manager.PeriodRecordRow(
            record_id=record_id_for(seller_id, period),
            seller_id=seller_id,
            period=period,
            period_type=period_type_of(period).value,
            status=PeriodStatus.OPEN.value,
            generated_at=when.isoformat(),
            closed_at=None,
            paid_at=None,
            prior_balance=prior_balance,
            net_liability=ZERO,
            total_paid=ZERO,
            balance=ZERO,
        )
        data_manager.create(self._workbook, data_manager.PERIOD_RECORDS, record)
        self._invalidate()
        log.info(
            "Opened period '%s' for seller '%s' (prior balance=%s)",
            period,
            seller_id,
            prior_balance,
        )
        return record

    def save(self, record: data_manager.PeriodRecordRow) -> None:
        """Persist ``record`` over its stored row.

        Raises:
            NotFoundError: If the record was never created.
        """

        try:
            data_manager.update(self._workbook, data_manager.PERIOD_RECORDS, record.record_id, record)
        except KeyError as exc:
            raise NotFoundError("period", record.record_id) from exc
        self._invalidate()

    def invalidate(self) -> None:
        """Drop cached rows so the next query rereads the workbook."""

        self._invalidate()

    def _ensure_cache(self) -> Dict[str, Any]:
        if "all" not in self._cache:
            records = data_manager.get(self._workbook, data_manager.PERIOD_RECORDS)
            self._cache["all"] = records
            self._cache["by_id"] = {record.record_id: record for record in records}
            log.debug("Populated period cache with %d records", len(records))
        return self._cache

    def _invalidate(self) -> None:
        self._cache.clear()


__all__ = ["PeriodRecordStore", "record_id_for"]
