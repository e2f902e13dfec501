from __future__ import annotations

import pytest

from commission_ledger.constants import PeriodType
from commission_ledger.errors import ValidationError
from commission_ledger.periods import period_type_of, validate_period


@pytest.mark.parametrize(
    ("period", "expected"),
    [("2025-10", PeriodType.MONTHLY), ("2025-01", PeriodType.MONTHLY), ("2025", PeriodType.YEARLY)],
)
def test_period_type_of(period, expected):
    assert period_type_of(period) is expected


@pytest.mark.parametrize("period", ["", "2025-13", "2025-00", "25-10", "2025/10", "2025-1", None])
def test_validate_period_rejects_malformed_keys(period):
    with pytest.raises(ValidationError) as excinfo:
        validate_period(period)
    assert excinfo.value.field == "period"
