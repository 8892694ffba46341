from contextlib import contextmanager
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import scheduler
from database import Base
from models import Income
from record_store import RecordStore, user_ids_with_records


@pytest.fixture
def session_factory(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @contextmanager
    def scope():
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    monkeypatch.setattr(scheduler, "session_scope", scope)
    monkeypatch.setattr(scheduler, "local_today", lambda: date(2024, 1, 10))
    return factory


def _add_income(factory, user_id, cents):
    with factory() as session:
        session.add(
            Income(
                user_id=user_id,
                source="Salary",
                amount_cents=cents,
                date=date(2024, 1, 1),
            )
        )
        session.commit()


def test_reconcile_updates_every_user(session_factory):
    _add_income(session_factory, 1, 1_000)
    _add_income(session_factory, 3, 2_000)

    assert scheduler.reconcile_all_ledgers() == 2

    with session_factory() as session:
        assert user_ids_with_records(session) == [1, 3]
        one = RecordStore(session, 1).get_ledger_entry(2024, 1)
        three = RecordStore(session, 3).get_ledger_entry(2024, 1)
        assert one.remaining_balance_cents == 1_000
        assert three.remaining_balance_cents == 2_000


def test_reconcile_skips_failing_user_and_continues(session_factory, monkeypatch):
    _add_income(session_factory, 1, 1_000)
    _add_income(session_factory, 2, 2_000)
    original = RecordStore.records_for_window

    def failing(self, start, end):
        if self.user_id == 1:
            raise SQLAlchemyError("locked")
        return original(self, start, end)

    monkeypatch.setattr(RecordStore, "records_for_window", failing)

    assert scheduler.reconcile_all_ledgers() == 1

    with session_factory() as session:
        assert RecordStore(session, 1).ledger_entries() == []
        assert RecordStore(session, 2).get_ledger_entry(2024, 1) is not None


def test_disabled_scheduler_does_not_start():
    manager = scheduler.SchedulerManager()
    manager.enabled = False
    manager.start()
    assert not manager.scheduler.running
    manager.stop()
