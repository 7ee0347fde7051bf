"""
Change metrics for the portfolio summary.

Two flavours of "change" exist:

* live 24h change, weighted by value from each instrument's own 24h move
  (computed by the aggregation engine),
* snapshot change against a stored daily snapshot (7d, 30d, 1y).

Both are reported as a ChangeMetric. `available=False` means there is no
meaningful number (no snapshot yet, zero base); it is never collapsed to 0%.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from utils.portfolio.constants import LIVE_PERIOD, SNAPSHOT_PERIODS
from utils.portfolio.models import Snapshot
from utils.prices.models import HUNDRED, ZERO, FxRateTable


@dataclass(frozen=True)
class ChangeMetric:
    available: bool
    percent: Optional[Decimal] = None
    value_change: Optional[Decimal] = None

    @classmethod
    def unavailable(cls) -> "ChangeMetric":
        return cls(available=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": self.available,
            "percent": float(self.percent) if self.percent is not None else None,
            "value_change": float(self.value_change) if self.value_change is not None else None,
        }


def fx_change_for_currency(currency: str, primary_currency: str, fx_rates: FxRateTable,
                           eur_usd_change_24h: Optional[Decimal] = None) -> Decimal:
    """
    24h move (percent) of one unit of `currency` measured in the primary currency.

    Uses the rate table's own change when the FX source reported one. Otherwise
    the EUR/USD reporting pair covers the EUR<->USD case: when EUR/USD rises,
    USD assets lose value for a EUR user and EUR assets gain value for a USD
    user. Any other pair without data moves by 0.
    """
    currency = (currency or "").upper()
    primary = (primary_currency or "").upper()
    if currency == primary:
        return ZERO

    fx = fx_rates.get(currency)
    if fx is not None and fx.change_24h is not None:
        return fx.change_24h

    if eur_usd_change_24h is not None:
        if primary == "EUR" and currency == "USD":
            return -eur_usd_change_24h
        if primary == "USD" and currency == "EUR":
            return eur_usd_change_24h
    return ZERO


def live_change(weighted_change: Decimal, total_value: Decimal) -> ChangeMetric:
    """
    Live change from a value-weighted sum (sum of value * change%).

    Unavailable when the total is 0.
    """
    if total_value <= 0:
        return ChangeMetric.unavailable()
    return ChangeMetric(
        available=True,
        percent=weighted_change / total_value,
        value_change=weighted_change / HUNDRED,
    )


def snapshot_change(live_total: Optional[Decimal], snapshot_total: Optional[Decimal]) -> ChangeMetric:
    """Change of the live total against a stored total; unavailable without a non-zero base."""
    if live_total is None or snapshot_total is None or snapshot_total == 0:
        return ChangeMetric.unavailable()
    delta = live_total - snapshot_total
    return ChangeMetric(
        available=True,
        percent=delta / snapshot_total * HUNDRED,
        value_change=delta,
    )


def change_against_snapshot(summary, snapshot: Optional[Snapshot]) -> ChangeMetric:
    """
    Compare a PortfolioSummary with one snapshot.

    EUR users are compared on the stored EUR total, everyone else on the USD
    total, so no FX conversion of historical values is needed.
    """
    if snapshot is None:
        return ChangeMetric.unavailable()
    if summary.primary_currency == "EUR":
        live_total = summary.total_value_eur
    else:
        live_total = summary.total_value_usd
    return snapshot_change(live_total, snapshot.total_in(summary.primary_currency))


def period_changes(summary, past_snapshots: Dict[str, Optional[Snapshot]]) -> Dict[str, ChangeMetric]:
    """
    Changes for every period label: 24h live, the rest from snapshots.

    Args:
        summary: PortfolioSummary for the current request
        past_snapshots: Period label -> nearest snapshot at or before that day

    Returns:
        Mapping label -> ChangeMetric for 24h, 7d, 30d and 1y
    """
    changes = {LIVE_PERIOD: summary.change_24h}
    for label in SNAPSHOT_PERIODS:
        changes[label] = change_against_snapshot(summary, past_snapshots.get(label))
    return changes
