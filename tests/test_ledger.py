import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from errors import InternalFailure, InvalidRequest
from models import Balance, RecurrenceInterval
from record_store import RecordStore
from schemas import ExpenseIn, IncomeIn, ReceiptIn, ReceiptItemIn
from services import (
    BalanceLedgerService,
    CategoryService,
    ExpenseService,
    IncomeService,
    ReceiptService,
    user_ledger_lock,
)


def _income(session, amount, day, user_id=1, **recurring):
    return IncomeService(session, user_id).create(
        IncomeIn(source="Salary", amount=Decimal(amount), date=day, **recurring)
    )


def _expense(session, amount, day, category="Rent", user_id=1, **recurring):
    categories = CategoryService(session, user_id)
    cat = categories.resolve(category)
    session.commit()
    return ExpenseService(session, user_id).create(
        ExpenseIn(
            category_id=cat.id,
            description=category,
            amount=Decimal(amount),
            date=day,
            **recurring,
        )
    )


def _count(session) -> int:
    return session.scalar(select(func.count(Balance.id)))


def test_month_carries_previous_remaining_balance(session):
    _income(session, "1000", date(2024, 5, 10))
    _income(session, "500", date(2024, 6, 5))
    _expense(
        session,
        "100",
        date(2024, 6, 1),
        is_recurring=True,
        recurrence_interval=RecurrenceInterval.monthly,
    )

    BalanceLedgerService(session, 1, years_back=1, years_ahead=1).update_balances(
        date(2024, 6, 15)
    )

    store = RecordStore(session, 1)
    may = store.get_ledger_entry(2024, 5)
    june = store.get_ledger_entry(2024, 6)
    july = store.get_ledger_entry(2024, 7)
    assert may.remaining_balance_cents == 100_000
    assert june.starting_balance_cents == 100_000
    assert june.remaining_balance_cents == 140_000
    assert july.starting_balance_cents == 140_000
    assert july.remaining_balance_cents == 130_000


def test_every_month_starts_where_the_previous_one_ended(session):
    _income(
        session,
        "250.10",
        date(2023, 3, 31),
        is_recurring=True,
        recurrence_interval=RecurrenceInterval.monthly,
    )
    _expense(
        session,
        "19.99",
        date(2023, 1, 2),
        is_recurring=True,
        recurrence_interval=RecurrenceInterval.weekly,
        recurrence_end=date(2024, 2, 1),
    )

    entries = BalanceLedgerService(
        session, 1, years_back=1, years_ahead=1
    ).update_balances(date(2024, 1, 1))

    assert entries[0].starting_balance_cents == 0
    for previous, current in zip(entries, entries[1:]):
        assert current.starting_balance_cents == previous.remaining_balance_cents
        assert (current.year * 12 + current.month) - (
            previous.year * 12 + previous.month
        ) == 1


def test_horizon_spans_configured_years(session):
    service = BalanceLedgerService(session, 1, years_back=10, years_ahead=2)
    assert service.horizon(date(2024, 9, 18)) == (date(2014, 9, 1), date(2026, 8, 1))

    entries = service.update_balances(date(2024, 9, 18))
    assert len(entries) == 144
    assert (entries[0].year, entries[0].month) == (2014, 9)
    assert (entries[-1].year, entries[-1].month) == (2026, 8)


def test_zero_years_ahead_stops_at_anchor_month(session):
    service = BalanceLedgerService(session, 1, years_back=0, years_ahead=0)
    entries = service.update_balances(date(2024, 4, 30))
    assert [(e.year, e.month) for e in entries] == [(2024, 4)]


def test_rerun_overwrites_rows_without_duplicates(session):
    _income(session, "42", date(2024, 2, 2))
    service = BalanceLedgerService(session, 1, years_back=1, years_ahead=1)

    first = [
        (e.year, e.month, e.starting_balance_cents, e.remaining_balance_cents)
        for e in service.update_balances(date(2024, 3, 1))
    ]
    assert _count(session) == 24

    second = [
        (e.year, e.month, e.starting_balance_cents, e.remaining_balance_cents)
        for e in service.update_balances(date(2024, 3, 1))
    ]
    assert first == second
    assert _count(session) == 24


def test_stale_rows_are_recomputed(session):
    session.add(
        Balance(
            user_id=1,
            year=2024,
            month=1,
            starting_balance_cents=99_999,
            remaining_balance_cents=5,
        )
    )
    session.commit()
    _income(session, "10", date(2023, 12, 24))

    BalanceLedgerService(session, 1, years_back=1, years_ahead=1).update_balances(
        date(2024, 1, 1)
    )

    entry = RecordStore(session, 1).get_ledger_entry(2024, 1)
    assert entry.starting_balance_cents == 1_000
    assert entry.remaining_balance_cents == 1_000


def test_rows_outside_horizon_are_left_alone(session):
    session.add(
        Balance(
            user_id=1,
            year=2030,
            month=1,
            starting_balance_cents=7,
            remaining_balance_cents=8,
        )
    )
    session.commit()

    BalanceLedgerService(session, 1, years_back=0, years_ahead=1).update_balances(
        date(2024, 1, 1)
    )

    untouched = RecordStore(session, 1).get_ledger_entry(2030, 1)
    assert untouched.starting_balance_cents == 7
    assert untouched.remaining_balance_cents == 8


def test_other_users_records_do_not_leak(session):
    _income(session, "1000", date(2024, 1, 5), user_id=2)
    _income(session, "1", date(2024, 1, 5), user_id=1)

    entries = BalanceLedgerService(
        session, 1, years_back=0, years_ahead=1
    ).update_balances(date(2024, 1, 1))

    assert entries[-1].remaining_balance_cents == 100
    assert RecordStore(session, 2).ledger_entries() == []


def test_receipt_lines_move_the_ledger(session):
    ReceiptService(session, 1).ingest(
        ReceiptIn(
            store_name="Market",
            date=date(2024, 3, 3),
            items=[
                ReceiptItemIn(name="Apples", category="Food", total_price="-45.50"),
                ReceiptItemIn(name="Deposit", category="Food", total_price="0.25"),
            ],
        )
    )

    BalanceLedgerService(session, 1, years_back=0, years_ahead=1).update_balances(
        date(2024, 1, 1)
    )

    march = RecordStore(session, 1).get_ledger_entry(2024, 3)
    assert march.starting_balance_cents == 0
    assert march.remaining_balance_cents == -4_525


def test_failure_keeps_earlier_months_and_stops(session, monkeypatch):
    _income(
        session,
        "10",
        date(2024, 1, 1),
        is_recurring=True,
        recurrence_interval=RecurrenceInterval.monthly,
    )
    original = RecordStore.records_for_window

    def failing(self, start, end):
        if start == date(2024, 3, 1):
            raise SQLAlchemyError("read failed")
        return original(self, start, end)

    monkeypatch.setattr(RecordStore, "records_for_window", failing)

    service = BalanceLedgerService(session, 1, years_back=0, years_ahead=1)
    with pytest.raises(InternalFailure):
        service.update_balances(date(2024, 1, 1))

    store = RecordStore(session, 1)
    assert store.get_ledger_entry(2024, 1).remaining_balance_cents == 1_000
    assert store.get_ledger_entry(2024, 2).remaining_balance_cents == 2_000
    assert store.get_ledger_entry(2024, 3) is None
    assert store.get_ledger_entry(2024, 4) is None
    assert _count(session) == 2


def test_user_ledger_lock_is_exclusive_per_user():
    entered = []

    def contender():
        with user_ledger_lock(7):
            entered.append("second")

    with user_ledger_lock(7):
        worker = threading.Thread(target=contender)
        worker.start()
        worker.join(timeout=0.1)
        assert entered == []
        with user_ledger_lock(8):
            pass
    worker.join(timeout=5)
    assert entered == ["second"]


def test_negative_horizon_is_rejected(session):
    with pytest.raises(InvalidRequest):
        BalanceLedgerService(session, 1, years_back=-3, years_ahead=2)


def test_settings_reject_negative_horizon(monkeypatch):
    monkeypatch.setenv("LEDGER_YEARS_BACK", "-3")
    get_settings.cache_clear()
    try:
        with pytest.raises(ValueError):
            get_settings()
    finally:
        monkeypatch.delenv("LEDGER_YEARS_BACK")
        get_settings.cache_clear()
