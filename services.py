from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from aggregation import PeriodSummary, ReceiptNetEffect, aggregate, daily_totals
from config import get_settings
from errors import InternalFailure, InvalidRequest, NotFound
from models import Balance, Category, Expense, Income, Receipt, ReceiptItem
from money import to_amount, to_cents
from periods import (
    ALL_TIME,
    Period,
    add_months,
    iter_months,
    local_today,
    month_period,
    month_start,
    resolve_summary_periods,
    year_period,
)
from record_store import RecordStore
from schemas import CategoryIn, ExpenseIn, IncomeIn, ReceiptIn

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Uncategorized"

_locks_guard = threading.Lock()
# One lock per user id ever seen, kept for the life of the process.
_user_locks: dict[int, threading.Lock] = {}


@contextmanager
def user_ledger_lock(user_id: int) -> Iterator[None]:
    """Serialise ledger updates for one user within this process."""
    with _locks_guard:
        lock = _user_locks.setdefault(user_id, threading.Lock())
    with lock:
        yield


def balance_to_dict(entry: Balance) -> dict[str, object]:
    return {
        "id": entry.id,
        "userId": entry.user_id,
        "year": entry.year,
        "month": entry.month,
        "startingBalance": to_amount(entry.starting_balance_cents),
        "remainingBalance": to_amount(entry.remaining_balance_cents),
    }


def _month_filter(model, year: Optional[int], month: Optional[int]):
    if year is None:
        return None
    if month is None:
        period = year_period(year)
    else:
        period = month_period(year, month)
    return model.date.between(period.start, period.end)


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise InvalidRequest("Category not found")
        return category

    def _find_by_name(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.lower(),
            )
        )

    def _add(self, name: str) -> Category:
        category = Category(user_id=self.user_id, name=name.strip())
        self.session.add(category)
        self.session.flush()
        return category

    def create(self, data: CategoryIn) -> Category:
        if self._find_by_name(data.name.strip()):
            raise InvalidRequest("Category with this name already exists")
        category = self._add(data.name)
        self.session.commit()
        self.session.refresh(category)
        return category

    def resolve(self, name: Optional[str]) -> Category:
        """Find a category by name, tolerating one typo, creating it if absent."""
        raw = (name or "").strip() or DEFAULT_CATEGORY
        exact = self._find_by_name(raw)
        if exact:
            return exact

        wanted = raw.lower()
        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in self.list_all():
            dist = int(Levenshtein.distance(wanted, category.name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted({c.name for c in best}))
                raise InvalidRequest(
                    f"Category '{raw}' is ambiguous; matches: {options}"
                )
            return best[0]
        return self._add(raw)


class IncomeService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            source=data.source.strip(),
            amount_cents=to_cents(data.amount),
            date=data.date,
            is_recurring=data.is_recurring,
            recurrence_interval=data.recurrence_interval,
            recurrence_end=data.recurrence_end,
            note=data.note,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def list(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[Income]:
        stmt = select(Income).where(Income.user_id == self.user_id)
        window = _month_filter(Income, year, month)
        if window is not None:
            stmt = stmt.where(window)
        return list(self.session.scalars(stmt.order_by(Income.date, Income.id)).all())

    def delete(self, income_id: int) -> None:
        income = self.session.get(Income, income_id)
        if not income or income.user_id != self.user_id:
            raise NotFound("Income not found")
        self.session.delete(income)
        self.session.commit()


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: ExpenseIn) -> Expense:
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        expense = Expense(
            user_id=self.user_id,
            category_id=category.id,
            description=data.description.strip(),
            amount_cents=to_cents(data.amount),
            date=data.date,
            is_recurring=data.is_recurring,
            recurrence_interval=data.recurrence_interval,
            recurrence_end=data.recurrence_end,
            note=data.note,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def list(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
        )
        window = _month_filter(Expense, year, month)
        if window is not None:
            stmt = stmt.where(window)
        stmt = stmt.order_by(Expense.date, Expense.id)
        return list(self.session.scalars(stmt).all())

    def delete(self, expense_id: int) -> None:
        expense = self.session.get(Expense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise NotFound("Expense not found")
        self.session.delete(expense)
        self.session.commit()


class ReceiptService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def ingest(self, data: ReceiptIn) -> Receipt:
        """Store a receipt, fixing each line's income/expense effect once."""
        categories = CategoryService(self.session, self.user_id)
        receipt = Receipt(
            user_id=self.user_id,
            store_name=data.store_name,
            date=data.date,
        )
        for item in data.items:
            category = categories.resolve(item.category)
            effect = ReceiptNetEffect.from_total_price_cents(to_cents(item.total_price))
            receipt.items.append(
                ReceiptItem(
                    category_id=category.id,
                    name=item.name.strip(),
                    date=item.date or data.date,
                    net_effect=effect.kind,
                    amount_cents=effect.amount_cents,
                )
            )
        self.session.add(receipt)
        self.session.commit()
        self.session.refresh(receipt)
        logger.info(
            f"receipt_ingested: user_id={self.user_id} receipt_id={receipt.id} "
            f"items={len(receipt.items)}"
        )
        return receipt


class BalanceLedgerService:
    """Carries month-end balances forward across the configured horizon.

    Months are processed strictly in order: each month's starting balance is
    the previous month's remaining balance, with the first month starting at
    zero. Every month is committed on its own, so a failure leaves earlier
    months persisted and does not touch later ones. Callers must hold
    ``user_ledger_lock`` for the user while this runs.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        years_back: Optional[int] = None,
        years_ahead: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.user_id = user_id
        self.store = RecordStore(session, user_id)
        self.years_back = settings.years_back if years_back is None else years_back
        self.years_ahead = settings.years_ahead if years_ahead is None else years_ahead
        if self.years_back < 0 or self.years_ahead < 0:
            raise InvalidRequest("Ledger horizon years must not be negative")

    def horizon(self, anchor_month: date) -> tuple[date, date]:
        anchor = month_start(anchor_month)
        first = add_months(anchor, -12 * self.years_back)
        last = add_months(anchor, max(12 * self.years_ahead - 1, 0))
        return first, last

    def update_balances(self, anchor_month: Optional[date] = None) -> list[Balance]:
        anchor_month = anchor_month or local_today()
        first, last = self.horizon(anchor_month)
        logger.info(
            f"ledger_update: user_id={self.user_id} "
            f"start={first:%Y-%m} end={last:%Y-%m}"
        )

        carry = 0
        entries: list[Balance] = []
        for current in iter_months(first, last):
            period = month_period(current.year, current.month)
            try:
                records = self.store.records_for_window(period.start, period.end)
                summary = aggregate(records, period.start, period.end)
                remaining = carry + summary.income_total - summary.expense_total
                entry = self.store.upsert_ledger_entry(
                    current.year, current.month, carry, remaining
                )
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.exception(
                    f"ledger_update_failed: user_id={self.user_id} "
                    f"month={current:%Y-%m}"
                )
                raise InternalFailure(
                    f"Ledger update failed at {current:%Y-%m}"
                ) from exc
            logger.debug(
                f"ledger_month: user_id={self.user_id} month={current:%Y-%m} "
                f"starting={carry} income={summary.income_total} "
                f"expenses={summary.expense_total} remaining={remaining}"
            )
            entries.append(entry)
            carry = remaining

        logger.info(
            f"ledger_update_done: user_id={self.user_id} months={len(entries)} "
            f"final_balance={carry}"
        )
        return entries


class SummaryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = RecordStore(session, user_id)

    def summarize(self, period: Period) -> PeriodSummary:
        try:
            records = self.store.records_for_window(period.start, period.end)
        except SQLAlchemyError as exc:
            raise InternalFailure("Failed to fetch financial data") from exc
        return aggregate(records, period.start, period.end)

    def monthly(self, year: int, month: int) -> PeriodSummary:
        return self.summarize(month_period(year, month))

    def yearly(self, year: int) -> PeriodSummary:
        return self.summarize(year_period(year))

    def yearly_by_month(self, year: int) -> list[PeriodSummary]:
        return [self.monthly(year, month) for month in range(1, 13)]

    def date_range(self, start: date, end: date) -> PeriodSummary:
        if start > end:
            raise InvalidRequest("Start date must be before end date")
        return self.summarize(Period("range", start, end))

    def all_time(self, today: Optional[date] = None) -> PeriodSummary:
        return self.get_summary(ALL_TIME, today=today)[0]

    def _earliest(self) -> Optional[date]:
        try:
            return self.store.earliest_transaction_date()
        except SQLAlchemyError as exc:
            raise InternalFailure("Failed to fetch financial data") from exc

    def get_summary(
        self,
        mode: Optional[str],
        *,
        year: Optional[str] = None,
        month: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        today: Optional[date] = None,
    ) -> list[PeriodSummary]:
        periods = resolve_summary_periods(
            mode,
            year=year,
            month=month,
            start=start,
            end=end,
            earliest=self._earliest,
            today=today,
        )
        return [self.summarize(period) for period in periods]

    def yearly_balance(self, year: int) -> dict[str, object]:
        entries = sorted(
            self.store.ledger_entries(year=year), key=lambda e: (e.year, e.month)
        )
        if not entries:
            raise NotFound(f"No balances found for {year}")
        starting = entries[0].starting_balance_cents
        remaining = entries[-1].remaining_balance_cents
        return {
            "year": year,
            "startingBalance": to_amount(starting),
            "remainingBalance": to_amount(remaining),
            "balance": to_amount(remaining - starting),
            "summary": self.yearly(year).to_dict(),
        }


class DailyBalanceService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = RecordStore(session, user_id)

    def daily_balances(self, year: int, month: int) -> dict[str, object]:
        entry = self.store.get_ledger_entry(year, month)
        if entry is None:
            raise NotFound("Balance not found for the specified month")

        period = month_period(year, month)
        try:
            records = self.store.records_for_window(period.start, period.end)
        except SQLAlchemyError as exc:
            raise InternalFailure("Failed to fetch daily balances") from exc

        running = entry.starting_balance_cents
        rows = []
        for day, totals in daily_totals(records, period.start, period.end).items():
            starting = running
            running = starting + totals.income_cents - totals.expense_cents
            rows.append(
                {
                    "date": day.isoformat(),
                    "startingBalance": to_amount(starting),
                    "income": to_amount(totals.income_cents),
                    "expenses": to_amount(totals.expense_cents),
                    "remainingBalance": to_amount(running),
                }
            )
        return {"monthBalance": balance_to_dict(entry), "dailyBalances": rows}
