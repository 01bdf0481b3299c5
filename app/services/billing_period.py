"""
Billing Period Calculator
=========================

Pure date arithmetic for subscription periods.
"""

import calendar
import math
from datetime import datetime, timedelta
from typing import Optional

from app.models.subscription import BillingInterval

DEFAULT_PAID_TRIAL_DAYS = 7
MIN_PAID_TRIAL_DAYS = 1
MAX_PAID_TRIAL_DAYS = 31


def resolve_paid_trial_days(raw) -> int:
    """
    Parse a configured trial length.

    Unset, blank or non-numeric values fall back to 7 days. Fractions are
    floored and the result is clamped to 1..31.
    """
    if raw is None:
        return DEFAULT_PAID_TRIAL_DAYS

    try:
        value = float(str(raw).strip())
    except ValueError:
        return DEFAULT_PAID_TRIAL_DAYS

    if not math.isfinite(value):
        return DEFAULT_PAID_TRIAL_DAYS

    return max(MIN_PAID_TRIAL_DAYS, min(MAX_PAID_TRIAL_DAYS, math.floor(value)))


def normalize_billing_interval(value: Optional[str]) -> BillingInterval:
    """Map free-form interval input to a BillingInterval; unknown means monthly."""
    normalized = (value or "").strip().lower()
    if normalized in ("yearly", "annual", "annually", "year"):
        return BillingInterval.YEARLY
    if normalized == "trial":
        return BillingInterval.TRIAL
    return BillingInterval.MONTHLY


def _add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def compute_period_end(
    interval: BillingInterval,
    now: datetime,
    trial_days: Optional[int] = None,
) -> datetime:
    """
    End of the billing period that starts at ``now``.

    Args:
        interval: monthly, yearly or trial
        now: Period start (timezone-aware)
        trial_days: Trial length; defaults to 7 when not given

    Returns:
        Period end, always strictly after ``now``
    """
    interval = BillingInterval(interval)

    if interval == BillingInterval.YEARLY:
        return _add_months(now, 12)

    if interval == BillingInterval.TRIAL:
        days = resolve_paid_trial_days(trial_days)
        return now + timedelta(days=days)

    return _add_months(now, 1)
