"""
Operational sweep that marks overdue active appointments as no-shows.

An appointment still ``scheduled`` or ``confirmed`` once its end is more than
the grace period in the past was neither completed nor cancelled; the sweep
moves it to ``no_show`` so it stops counting as active.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from core.config import NO_SHOW_GRACE_MINUTES
from core.constants import ACTIVE_STATUSES, STATUS_NO_SHOW
from models import Appointment
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


def sweep_no_shows(
    db: Session,
    now: Optional[datetime] = None,
    grace: timedelta = timedelta(minutes=NO_SHOW_GRACE_MINUTES),
    batch_size: int = 200,
) -> int:
    """
    Mark active appointments that ended before ``now - grace`` as no-shows.

    Rows locked by a concurrent transaction (e.g. someone completing the
    appointment right now) are skipped and picked up by the next run.

    Returns:
        Number of appointments marked
    """
    now = now or utc_now()
    cutoff = now - grace
    marked = 0
    while True:
        overdue = db.scalars(
            select(Appointment)
            .where(
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.end_at <= cutoff,
            )
            .order_by(Appointment.end_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        ).all()
        if not overdue:
            break
        for appointment in overdue:
            appointment.status = STATUS_NO_SHOW
            logger.info(f"Appointment {appointment.id} marked no-show (ended {appointment.end_at.isoformat()})")
        db.commit()
        marked += len(overdue)
        if len(overdue) < batch_size:
            break
    if marked:
        logger.info(f"No-show sweep marked {marked} appointment(s)")
    return marked


class NoShowService:
    """Runs ``sweep_no_shows`` with a fresh session per run."""

    def __init__(
        self,
        session_factory: sessionmaker,
        grace: timedelta = timedelta(minutes=NO_SHOW_GRACE_MINUTES),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.grace = grace
        self.clock = clock

    def run_sweep(self) -> int:
        db = self.session_factory()
        try:
            return sweep_no_shows(db, now=self.clock(), grace=self.grace)
        except Exception as e:
            db.rollback()
            logger.exception(f"No-show sweep failed, will retry next cycle: {e}")
            return 0
        finally:
            db.close()
