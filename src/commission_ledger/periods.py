"""Period key helpers.

A period key is ``YYYY-MM`` for monthly cycles or ``YYYY`` for yearly ones.
Keys of the same type sort chronologically as plain strings.
"""

from __future__ import annotations

import re
from typing import Optional

from .constants import PeriodType
from .errors import ValidationError

_MONTHLY = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
_YEARLY = re.compile(r"^(\d{4})$")


def period_type_of(period: str) -> PeriodType:
    """Return the :class:`PeriodType` encoded by ``period``.

    Raises:
        ValidationError: If ``period`` is neither ``YYYY-MM`` nor ``YYYY``.
    """

    if not isinstance(period, str) or not period.strip():
        raise ValidationError("period", "period is required")
    if _MONTHLY.match(period):
        return PeriodType.MONTHLY
    if _YEARLY.match(period):
        return PeriodType.YEARLY
    raise ValidationError("period", f"expected YYYY-MM or YYYY, got {period!r}")


def validate_period(period: Optional[str]) -> str:
    """Return ``period`` unchanged after checking its format."""

    period_type_of(period)  # type: ignore[arg-type]
    return period  # type: ignore[return-value]
