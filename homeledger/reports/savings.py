"""Savings overview over the household's assets."""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from homeledger.models.ledger import Asset
from homeledger.models.reports import SavingsStats


def savings_stats(assets: Iterable[Asset]) -> SavingsStats:
    """
    Totals across all assets.

    An asset without a current valuation counts at what was invested.
    """
    total_invested = Decimal("0")
    total_current = Decimal("0")
    for asset in assets:
        total_invested += asset.amount_invested
        total_current += asset.effective_value

    gain = total_current - total_invested
    gain_percent = float(gain / total_invested * 100) if total_invested > 0 else 0.0
    return SavingsStats(
        total_invested=total_invested,
        total_current=total_current,
        gain=gain,
        gain_percent=gain_percent,
    )


def group_by_type(assets: Iterable[Asset]) -> dict[str, list[Asset]]:
    groups: dict[str, list[Asset]] = defaultdict(list)
    for asset in assets:
        groups[asset.type].append(asset)
    return dict(groups)
