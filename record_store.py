from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import and_, func, or_, select, union
from sqlalchemy.orm import Session, joinedload

from aggregation import LedgerRecord, LedgerRecords, ReceiptNetEffect, ReceiptRecord
from models import Balance, Expense, Income, Receipt, ReceiptItem


def _window_filter(model, start: date, end: date):
    one_time = and_(
        or_(model.is_recurring.is_(False), model.recurrence_interval.is_(None)),
        model.date.between(start, end),
    )
    recurring = and_(
        model.is_recurring.is_(True),
        model.recurrence_interval.is_not(None),
        model.date <= end,
        or_(model.recurrence_end.is_(None), model.recurrence_end >= start),
    )
    return or_(one_time, recurring)


def _ledger_record(row, key: str) -> LedgerRecord:
    recurring = bool(row.is_recurring and row.recurrence_interval)
    return LedgerRecord(
        key=key,
        amount_cents=row.amount_cents,
        date=row.date,
        interval=row.recurrence_interval if recurring else None,
        recurrence_end=row.recurrence_end if recurring else None,
    )


class RecordStore:
    """Reads a single user's records and ledger rows."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def incomes_for_window(self, start: date, end: date) -> tuple[LedgerRecord, ...]:
        rows = self.session.scalars(
            select(Income)
            .where(Income.user_id == self.user_id, _window_filter(Income, start, end))
            .order_by(Income.date, Income.id)
        ).all()
        return tuple(_ledger_record(row, row.source) for row in rows)

    def expenses_for_window(self, start: date, end: date) -> tuple[LedgerRecord, ...]:
        rows = self.session.scalars(
            select(Expense)
            .options(joinedload(Expense.category))
            .where(
                Expense.user_id == self.user_id, _window_filter(Expense, start, end)
            )
            .order_by(Expense.date, Expense.id)
        ).all()
        return tuple(_ledger_record(row, row.category.name) for row in rows)

    def receipt_items_for_window(
        self, start: date, end: date
    ) -> tuple[ReceiptRecord, ...]:
        rows = self.session.scalars(
            select(ReceiptItem)
            .join(Receipt, Receipt.id == ReceiptItem.receipt_id)
            .options(joinedload(ReceiptItem.category))
            .where(
                Receipt.user_id == self.user_id,
                ReceiptItem.date.between(start, end),
            )
            .order_by(ReceiptItem.date, ReceiptItem.id)
        ).all()
        return tuple(
            ReceiptRecord(
                key=row.category.name,
                date=row.date,
                effect=ReceiptNetEffect(row.net_effect, row.amount_cents),
            )
            for row in rows
        )

    def records_for_window(self, start: date, end: date) -> LedgerRecords:
        return LedgerRecords(
            incomes=self.incomes_for_window(start, end),
            expenses=self.expenses_for_window(start, end),
            receipt_items=self.receipt_items_for_window(start, end),
        )

    def earliest_transaction_date(self) -> Optional[date]:
        candidates = [
            self.session.scalar(
                select(func.min(Income.date)).where(Income.user_id == self.user_id)
            ),
            self.session.scalar(
                select(func.min(Expense.date)).where(Expense.user_id == self.user_id)
            ),
            self.session.scalar(
                select(func.min(ReceiptItem.date))
                .join(Receipt, Receipt.id == ReceiptItem.receipt_id)
                .where(Receipt.user_id == self.user_id)
            ),
        ]
        found = [d for d in candidates if d is not None]
        return min(found) if found else None

    def get_ledger_entry(self, year: int, month: int) -> Optional[Balance]:
        return self.session.scalar(
            select(Balance).where(
                Balance.user_id == self.user_id,
                Balance.year == year,
                Balance.month == month,
            )
        )

    def ledger_entries(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[Balance]:
        stmt = select(Balance).where(Balance.user_id == self.user_id)
        if year is not None:
            stmt = stmt.where(Balance.year == year)
        if month is not None:
            stmt = stmt.where(Balance.month == month)
        stmt = stmt.order_by(Balance.year.desc(), Balance.month.desc())
        return list(self.session.scalars(stmt).all())

    def upsert_ledger_entry(
        self,
        year: int,
        month: int,
        starting_balance_cents: int,
        remaining_balance_cents: int,
    ) -> Balance:
        entry = self.get_ledger_entry(year, month)
        if entry is None:
            entry = Balance(user_id=self.user_id, year=year, month=month)
            self.session.add(entry)
        entry.starting_balance_cents = starting_balance_cents
        entry.remaining_balance_cents = remaining_balance_cents
        self.session.flush()
        return entry


def user_ids_with_records(session: Session) -> list[int]:
    stmt = union(
        select(Income.user_id),
        select(Expense.user_id),
        select(Receipt.user_id),
        select(Balance.user_id),
    )
    return sorted(int(user_id) for user_id in session.scalars(stmt).all())
