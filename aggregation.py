"""Period aggregation over incomes, expenses and receipt items.

Everything here is pure: records come in as immutable values, every call
builds its own accumulator and hands it back inside the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from models import RecurrenceInterval, TransactionType
from money import to_amount
from periods import add_days, month_index
from recurrence import Occurrences, expand_occurrences


@dataclass(frozen=True)
class LedgerRecord:
    """An income or expense, keyed by source or category name."""

    key: str
    amount_cents: int
    date: date
    interval: Optional[RecurrenceInterval] = None
    recurrence_end: Optional[date] = None

    @property
    def is_recurring(self) -> bool:
        return self.interval is not None

    def occurrences(self, window_start: date, window_end: date) -> Occurrences:
        return expand_occurrences(
            self.date,
            self.interval,
            self.recurrence_end if self.interval else None,
            window_start,
            window_end,
        )


@dataclass(frozen=True)
class ReceiptNetEffect:
    kind: TransactionType
    amount_cents: int

    @classmethod
    def from_total_price_cents(cls, total_price_cents: int) -> ReceiptNetEffect:
        # Negative line totals are money spent; zero and positive are money in.
        if total_price_cents < 0:
            return cls(TransactionType.expense, -total_price_cents)
        return cls(TransactionType.income, total_price_cents)


@dataclass(frozen=True)
class ReceiptRecord:
    key: str
    date: date
    effect: ReceiptNetEffect


@dataclass(frozen=True)
class LedgerRecords:
    incomes: tuple[LedgerRecord, ...] = ()
    expenses: tuple[LedgerRecord, ...] = ()
    receipt_items: tuple[ReceiptRecord, ...] = ()


@dataclass
class Breakdowns:
    income: dict[str, int] = field(default_factory=dict)
    expense: dict[str, int] = field(default_factory=dict)

    def add(self, kind: TransactionType, key: str, cents: int) -> Breakdowns:
        target = self.income if kind == TransactionType.income else self.expense
        target[key] = target.get(key, 0) + cents
        return self

    def copy(self) -> Breakdowns:
        return Breakdowns(dict(self.income), dict(self.expense))


@dataclass(frozen=True)
class PeriodSummary:
    window_start: date
    window_end: date
    income_breakdown: dict[str, int]
    expense_breakdown: dict[str, int]

    @property
    def income_total(self) -> int:
        return sum(self.income_breakdown.values())

    @property
    def expense_total(self) -> int:
        return sum(self.expense_breakdown.values())

    @property
    def balance(self) -> int:
        return self.income_total - self.expense_total

    @property
    def total_days(self) -> int:
        return max(1, (self.window_end - self.window_start).days + 1)

    @property
    def total_months(self) -> int:
        months = month_index(self.window_end) - month_index(self.window_start) + 1
        return max(1, months)

    def net_per_category(self) -> dict[str, dict[str, int]]:
        keys = list(self.income_breakdown)
        keys += [k for k in self.expense_breakdown if k not in self.income_breakdown]
        result = {}
        for key in keys:
            income = self.income_breakdown.get(key, 0)
            expense = self.expense_breakdown.get(key, 0)
            result[key] = {
                "income": income,
                "expense": expense,
                "net": income - expense,
            }
        return result

    def to_dict(self) -> dict[str, object]:
        return {
            "windowStart": self.window_start.isoformat(),
            "windowEnd": self.window_end.isoformat(),
            "totalDays": self.total_days,
            "totalMonths": self.total_months,
            "incomeTotal": to_amount(self.income_total),
            "expenseTotal": to_amount(self.expense_total),
            "incomeBreakdown": {
                k: to_amount(v) for k, v in self.income_breakdown.items()
            },
            "expenseBreakdown": {
                k: to_amount(v) for k, v in self.expense_breakdown.items()
            },
            "netPerCategory": {
                k: {name: to_amount(v) for name, v in values.items()}
                for k, values in self.net_per_category().items()
            },
            "balance": to_amount(self.balance),
        }


def aggregate(
    records: LedgerRecords,
    window_start: date,
    window_end: date,
    breakdowns: Optional[Breakdowns] = None,
) -> PeriodSummary:
    """Net the records over the closed window ``[window_start, window_end]``.

    One-time records count once when dated inside the window; recurring ones
    count once per occurrence inside it. Receipt items are split by their net
    effect. Totals are the sums of the breakdowns. A seed ``breakdowns`` is
    copied, never changed.
    """
    acc = breakdowns.copy() if breakdowns is not None else Breakdowns()
    for income in records.incomes:
        count = income.occurrences(window_start, window_end).count()
        if count:
            acc.add(TransactionType.income, income.key, income.amount_cents * count)
    for expense in records.expenses:
        count = expense.occurrences(window_start, window_end).count()
        if count:
            acc.add(TransactionType.expense, expense.key, expense.amount_cents * count)
    for item in records.receipt_items:
        if window_start <= item.date <= window_end:
            acc.add(item.effect.kind, item.key, item.effect.amount_cents)
    return PeriodSummary(
        window_start=window_start,
        window_end=window_end,
        income_breakdown=acc.income,
        expense_breakdown=acc.expense,
    )


@dataclass(frozen=True)
class DayTotals:
    income_cents: int = 0
    expense_cents: int = 0


def daily_totals(
    records: LedgerRecords, window_start: date, window_end: date
) -> dict[date, DayTotals]:
    """Income and expense per calendar day of the window, zero-filled."""
    income: dict[date, int] = {}
    expense: dict[date, int] = {}
    for record in records.incomes:
        for day in record.occurrences(window_start, window_end):
            income[day] = income.get(day, 0) + record.amount_cents
    for record in records.expenses:
        for day in record.occurrences(window_start, window_end):
            expense[day] = expense.get(day, 0) + record.amount_cents
    for item in records.receipt_items:
        if not window_start <= item.date <= window_end:
            continue
        target = income if item.effect.kind == TransactionType.income else expense
        target[item.date] = target.get(item.date, 0) + item.effect.amount_cents

    days: dict[date, DayTotals] = {}
    for offset in range((window_end - window_start).days + 1):
        current = add_days(window_start, offset)
        days[current] = DayTotals(income.get(current, 0), expense.get(current, 0))
    return days
