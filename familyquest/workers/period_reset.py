"""
Scheduled reset of the family leaderboard buckets.

At each period boundary the matching bucket (period stars and period task
count) is zeroed on every family. Families are committed one at a time; a
family that keeps conflicting with live completions is reported and left for
the next run rather than blocking the rest.

Run once by hand with ``python -m familyquest.workers.period_reset weekly``.
"""
from __future__ import annotations

import argparse
import logging
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from familyquest.core.config import settings
from familyquest.core.documents import FAMILIES, DocumentStore, get_document_store
from familyquest.core.errors import NotFoundError, VersionConflict
from familyquest.features.family_stats.aggregates import reset_bucket
from familyquest.features.ledger.unit_of_work import UnitOfWork
from familyquest.models.family import PERIODS

logger = logging.getLogger("familyquest.workers.period_reset")

PERIOD_RESET_CRONS: Dict[str, str] = {
    "daily": "0 0 * * *",
    "weekly": "0 0 * * 0",
    "monthly": "0 0 1 * *",
    "yearly": "0 0 1 1 *",
}

# Crontab counts weekdays from Sunday=0; APScheduler numbers them from Monday
_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def crontab_trigger(expr: str, timezone: Optional[str] = None) -> CronTrigger:
    """CronTrigger for a standard five-field crontab expression."""
    minute, hour, day, month, day_of_week = expr.split()
    if day_of_week.isdigit():
        day_of_week = _WEEKDAY_NAMES[int(day_of_week)]
    return CronTrigger(
        minute=minute, hour=hour, day=day, month=month, day_of_week=day_of_week, timezone=timezone
    )


def _reset_family(store: DocumentStore, family_id: str, period: str, max_retries: int) -> Optional[bool]:
    """Reset one family's bucket. None when every attempt conflicted."""
    for _ in range(max_retries):
        uow = UnitOfWork(store)
        family = uow.get_family(family_id)
        changed = reset_bucket(family, period)
        try:
            uow.commit()
        except VersionConflict:
            continue
        return changed
    return None


def reset_period_bucket(period: str, store: Optional[DocumentStore] = None, *, max_retries: Optional[int] = None) -> dict:
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")
    store = store or get_document_store()
    attempts = max(1, settings.LEDGER_MAX_RETRIES if max_retries is None else max_retries)

    report = {"period": period, "families": 0, "reset": 0, "conflicts": 0, "skipped": 0}
    for doc in store.list(FAMILIES):
        report["families"] += 1
        try:
            changed = _reset_family(store, doc.doc_id, period, attempts)
        except NotFoundError:
            # Deleted after the listing; nothing left to reset
            report["skipped"] += 1
            logger.warning(
                "[period_reset] family vanished during reset",
                extra={"family_id": doc.doc_id, "event_type": "period.reset", "error_code": "not_found"},
            )
            continue
        if changed is None:
            report["conflicts"] += 1
            logger.error(
                "[period_reset] family kept conflicting",
                extra={"family_id": doc.doc_id, "event_type": "period.reset", "error_code": "conflict"},
            )
        elif changed:
            report["reset"] += 1

    logger.info("[period_reset] bucket reset", extra={"event_type": "period.reset", **report})
    return report


def register_period_reset_jobs(scheduler, store: Optional[DocumentStore] = None, timezone: Optional[str] = None) -> list:
    """Add one cron job per bucket to ``scheduler``. Returns the job ids."""
    tz = timezone or settings.SCHEDULER_TIMEZONE
    job_ids = []
    for period, cron in PERIOD_RESET_CRONS.items():
        job_id = f"period_reset:{period}"
        scheduler.add_job(
            reset_period_bucket,
            trigger=crontab_trigger(cron, tz),
            id=job_id,
            args=[period],
            kwargs={"store": store},
            name=f"Reset {period} leaderboard bucket",
            replace_existing=True,
        )
        job_ids.append(job_id)
    logger.info("[period_reset] jobs registered", extra={"jobs": job_ids, "timezone": tz})
    return job_ids


def build_scheduler(store: Optional[DocumentStore] = None, timezone: Optional[str] = None) -> BackgroundScheduler:
    tz = timezone or settings.SCHEDULER_TIMEZONE
    scheduler = BackgroundScheduler(daemon=True, timezone=tz)
    register_period_reset_jobs(scheduler, store, tz)
    return scheduler


def main() -> None:
    parser = argparse.ArgumentParser(description="Reset a family leaderboard bucket")
    parser.add_argument("period", choices=PERIODS)
    args = parser.parse_args()
    print(reset_period_bucket(args.period))


if __name__ == "__main__":
    main()
