"""
Trip Calculations

All sums use base-currency amounts. Currency conversion for budget
planning walks a graph of manually entered rates.
"""

from collections import defaultdict, deque
from decimal import Decimal
from typing import Iterable, Optional

from homeledger.models.reports import MemberBalance, SourceBreakdown, TripTotals
from homeledger.models.trips import TripExpense, TripFund, TripReturn

DEFAULT_FUND_SOURCE = "asset"
FUND_SOURCES = ("exchange", "asset")


def _base(item) -> Decimal:
    return item.base_amount or Decimal("0")


def trip_totals(
    funds: Iterable[TripFund],
    expenses: Iterable[TripExpense],
    returns: Iterable[TripReturn],
) -> TripTotals:
    """
    Pot totals.

    net cost = expenses - returns; remaining = funds - net cost.
    """
    total_funds = sum((_base(f) for f in funds), Decimal("0"))
    total_expenses = sum((_base(e) for e in expenses), Decimal("0"))
    total_returns = sum((_base(r) for r in returns), Decimal("0"))
    net_cost = total_expenses - total_returns
    return TripTotals(
        total_funds=total_funds,
        total_expenses=total_expenses,
        total_returns=total_returns,
        net_cost=net_cost,
        remaining_funds=total_funds - net_cost,
    )


def by_category(expenses: Iterable[TripExpense]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for expense in expenses:
        totals[expense.category] += _base(expense)
    return dict(totals)


def by_source(funds: Iterable[TripFund]) -> dict[str, SourceBreakdown]:
    """Funds split by how the money was raised; unspecified counts as savings."""
    breakdown = {source: SourceBreakdown() for source in FUND_SOURCES}
    for fund in funds:
        entry = breakdown.get(fund.source or DEFAULT_FUND_SOURCE)
        if entry is None:
            continue
        entry.total_base += _base(fund)
        entry.count += 1
    return breakdown


def by_user(
    funds: Iterable[TripFund],
    expenses: Iterable[TripExpense],
    returns: Iterable[TripReturn],
) -> dict[str, MemberBalance]:
    """Per member: contributed - spent - received."""
    balances: dict[str, MemberBalance] = defaultdict(MemberBalance)
    for fund in funds:
        balances[fund.contributor_id].contributed += _base(fund)
    for expense in expenses:
        balances[expense.paid_by].spent += _base(expense)
    for ret in returns:
        balances[ret.received_by].received += _base(ret)
    return dict(balances)


def _rate_graph(rates: dict[str, Decimal]) -> dict[str, dict[str, Decimal]]:
    graph: dict[str, dict[str, Decimal]] = defaultdict(dict)
    for pair, rate in rates.items():
        source, _, target = pair.partition("-")
        rate = Decimal(str(rate))
        if not source or not target or rate <= 0:
            raise ValueError(f"Invalid conversion rate entry: {pair}={rate}")
        graph[source][target] = rate
        graph[target][source] = 1 / rate
    return graph


def converted_values(
    amount: Decimal,
    from_currency: str,
    rates: dict[str, Decimal],
) -> dict[str, Decimal]:
    """
    `amount` expressed in every currency reachable through `rates`.

    Rates are keyed "FROM-TO"; each also works in reverse. Where several
    paths exist the one with the fewest hops wins.
    """
    graph = _rate_graph(rates)
    values: dict[str, Decimal] = {}
    visited = {from_currency}
    queue = deque([(from_currency, Decimal("1"))])

    while queue:
        currency, rate = queue.popleft()
        for neighbor, step in graph.get(currency, {}).items():
            if neighbor in visited:
                continue
            visited.add(neighbor)
            values[neighbor] = amount * rate * step
            queue.append((neighbor, rate * step))
    return values


def conversion_rate(
    from_currency: str,
    to_currency: str,
    rates: dict[str, Decimal],
) -> Optional[Decimal]:
    """
    Rate from one currency to another through the rate graph.

    Returns:
        The rate, 1 for the same currency, None when no path exists
    """
    if from_currency == to_currency:
        return Decimal("1")
    return converted_values(Decimal("1"), from_currency, rates).get(to_currency)
