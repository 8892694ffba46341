import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from errors import InternalFailure
from periods import local_today
from record_store import user_ids_with_records
from services import BalanceLedgerService, user_ledger_lock


logger = logging.getLogger(__name__)


def reconcile_all_ledgers() -> int:
    """Re-run the ledger update for every user that has records."""
    with session_scope() as session:
        user_ids = user_ids_with_records(session)

    anchor = local_today()
    updated = 0
    for user_id in user_ids:
        with user_ledger_lock(user_id), session_scope() as session:
            try:
                BalanceLedgerService(session, user_id).update_balances(anchor)
            except InternalFailure as exc:
                logger.warning(
                    f"ledger_reconcile_skipped: user_id={user_id} error={exc}"
                )
                continue
        updated += 1
    return updated


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = settings.scheduler_enabled
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        count = reconcile_all_ledgers()
        logger.info(f"scheduler_run: source={source} ledgers_updated={count}")

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler disabled")
            return

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="ledger_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 ledger reconcile")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
