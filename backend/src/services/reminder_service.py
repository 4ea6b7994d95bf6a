"""
Appointment reminder service.

A periodic sweep looks for every ``(appointment, offset)`` pair whose due
time ``start_at - offset`` falls in ``[now - lookback, now]`` and that has no
delivery record yet. Each pair is dispatched and, only after the dispatcher
reports delivery, a ``ReminderDelivery`` row is written.

Delivery semantics are at-least-once:
- a failed dispatch writes no record, so the next sweep retries it
- if the record cannot be written after a successful dispatch, the next
  sweep sends it again (duplicate) rather than dropping it
- the status is re-read under a row lock right before dispatch, so a
  cancellation committed before that point is always respected
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.config import (
    REMINDER_BATCH_SIZE,
    REMINDER_CATCH_UP_HOURS,
    REMINDER_GRACE_SECONDS,
    REMINDER_OFFSETS,
    REMINDER_SWEEP_INTERVAL_SECONDS,
)
from core.constants import ACTIVE_STATUSES
from models import Appointment, ReminderDelivery
from services.notification_service import DeliveryStatus, NotificationService
from shared_types import ReminderTask, SweepResult
from utils.datetime_utils import utc_now
from utils.timing_utils import calculate_reminder_time, normalize_offsets, parse_offset

logger = logging.getLogger(__name__)

ReminderPair = Tuple[int, str]


def _chunks(items: Sequence[ReminderPair], size: int) -> Iterable[Sequence[ReminderPair]]:
    for index in range(0, len(items), size):
        yield items[index:index + size]


class ReminderService:
    """
    Service for sending appointment reminders.

    Database sessions are created fresh for each sweep from
    ``session_factory`` to avoid stale session issues.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        notification_service: NotificationService,
        offsets: Iterable[str] = REMINDER_OFFSETS,
        grace: timedelta = timedelta(seconds=REMINDER_GRACE_SECONDS),
        catch_up_window: timedelta = timedelta(hours=REMINDER_CATCH_UP_HOURS),
        batch_size: int = REMINDER_BATCH_SIZE,
        retry_interval: timedelta = timedelta(seconds=REMINDER_SWEEP_INTERVAL_SECONDS),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.notification_service = notification_service
        self.offsets: List[str] = normalize_offsets(offsets)
        self.grace = grace
        self.catch_up_window = max(catch_up_window, grace)
        self.batch_size = max(1, batch_size)
        self.retry_interval = retry_interval
        self.clock = clock
        self._stop_event = threading.Event()

    # ===== Lifecycle =====

    def request_stop(self) -> None:
        """Let the current batch finish and start no new one."""
        self._stop_event.set()

    def resume(self) -> None:
        """Clear a previous stop request so sweeps run again."""
        self._stop_event.clear()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # ===== Sweeps =====

    def run_catch_up(self, now: Optional[datetime] = None) -> SweepResult:
        """Sweep with the long catch-up lookback, used on process start."""
        logger.info(f"Running reminder catch-up over the last {self.catch_up_window}")
        return self.run_sweep(now=now, lookback=self.catch_up_window)

    def run_sweep(self, now: Optional[datetime] = None, lookback: Optional[timedelta] = None) -> SweepResult:
        """
        Dispatch every due reminder that has not been delivered yet.

        Args:
            now: Reference instant (defaults to the service clock)
            lookback: How far back a due time may lie (defaults to the grace period)

        Returns:
            Counters for the run
        """
        now = now or self.clock()
        lookback = lookback or self.grace
        result = SweepResult()

        if self.stop_requested:
            result.stopped_early = True
            return result

        try:
            pairs = self._collect_due_pairs(now, lookback)
        except SQLAlchemyError as e:
            # Retried by the next sweep; the due window re-evaluates the same obligations
            logger.exception(f"Failed to query due reminders: {e}")
            result.errors += 1
            return result

        result.due = len(pairs)
        if not pairs:
            logger.debug("No reminders due")
            return result

        logger.info(f"Found {len(pairs)} due reminder(s)")
        for batch in _chunks(pairs, self.batch_size):
            if self.stop_requested:
                logger.info("Stop requested, leaving remaining reminders for the next run")
                result.stopped_early = True
                break
            self._process_batch(batch, result, now)

        logger.info(
            f"Reminder sweep finished: {result.sent} sent, {result.failed} failed, "
            f"{result.skipped} skipped, {result.errors} error(s)"
        )
        return result

    def _collect_due_pairs(self, now: datetime, lookback: timedelta) -> List[ReminderPair]:
        db = self.session_factory()
        try:
            pairs: List[ReminderPair] = []
            for label in self.offsets:
                pairs.extend((appointment_id, label) for appointment_id in self._find_due(db, label, now, lookback))
            return pairs
        finally:
            db.close()

    @staticmethod
    def _find_due(db: Session, label: str, now: datetime, lookback: timedelta) -> List[int]:
        """
        Ids of active appointments whose ``label`` reminder is due and unsent.

        Due means ``now - lookback <= start_at - offset <= now``; sessions that
        already started are excluded.
        """
        offset = parse_offset(label)
        already_sent = exists().where(
            ReminderDelivery.appointment_id == Appointment.id,
            ReminderDelivery.offset_label == label,
        )
        stmt = (
            select(Appointment.id)
            .where(
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_at >= now - lookback + offset,
                Appointment.start_at <= now + offset,
                Appointment.start_at > now,
                ~already_sent,
            )
            .order_by(Appointment.start_at)
        )
        return list(db.scalars(stmt).all())

    def _process_batch(
        self, batch: Sequence[ReminderPair], result: SweepResult, now: Optional[datetime] = None
    ) -> None:
        now = now or self.clock()
        db = self.session_factory()
        try:
            for appointment_id, label in batch:
                try:
                    self._process_pair(db, appointment_id, label, result, now)
                except SQLAlchemyError as e:
                    db.rollback()
                    result.errors += 1
                    logger.exception(
                        f"Store error on {label} reminder for appointment {appointment_id}, "
                        f"will retry next sweep: {e}"
                    )
        finally:
            db.close()

    def is_last_attempt(self, appointment: Appointment, label: str, now: datetime) -> bool:
        """
        Whether the next regular sweep will no longer consider this reminder due.

        That sweep runs about ``retry_interval`` from ``now`` with the grace
        lookback, and skips sessions that have started by then.
        """
        next_sweep = now + self.retry_interval
        due_at = calculate_reminder_time(appointment.start_at, label)
        return due_at < next_sweep - self.grace or appointment.start_at <= next_sweep

    def _process_pair(
        self, db: Session, appointment_id: int, label: str, result: SweepResult, now: datetime
    ) -> None:
        appointment = db.execute(
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if appointment is None:
            # Locked by a concurrent transaction (or gone); look again next sweep
            db.rollback()
            result.skipped += 1
            return

        if appointment.status not in ACTIVE_STATUSES:
            db.rollback()
            result.skipped += 1
            logger.info(f"Skipping {label} reminder for appointment {appointment_id}: status is {appointment.status}")
            return

        already_sent = db.scalar(
            select(ReminderDelivery.id).where(
                ReminderDelivery.appointment_id == appointment_id,
                ReminderDelivery.offset_label == label,
            )
        )
        if already_sent is not None:
            db.rollback()
            result.skipped += 1
            return

        try:
            status = self.notification_service.send_reminder(appointment, label)
        except Exception as e:
            logger.exception(f"Dispatcher raised for {label} reminder of appointment {appointment_id}: {e}")
            status = DeliveryStatus.FAILED

        if status is not DeliveryStatus.DELIVERED:
            db.rollback()
            result.failed += 1
            if self.is_last_attempt(appointment, label, now):
                logger.error(
                    f"{label} reminder for appointment {appointment_id} not delivered and its due window "
                    f"closes before the next sweep; it will not be sent"
                )
            else:
                logger.warning(f"{label} reminder for appointment {appointment_id} not delivered, will retry next sweep")
            return

        db.add(ReminderDelivery(
            appointment_id=appointment_id,
            offset_label=label,
            channel=appointment.patient.contact_preference,
            fired_at=self.clock(),
        ))
        try:
            db.commit()
        except IntegrityError:
            # Another sweep recorded the same reminder first
            db.rollback()
            logger.info(f"{label} reminder for appointment {appointment_id} was recorded concurrently")
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(
                f"Delivered {label} reminder for appointment {appointment_id} but could not record it; "
                f"it may be sent again: {e}"
            )
        result.sent += 1
        result.sent_pairs.append((appointment_id, label))
        logger.info(f"Sent {label} reminder for appointment {appointment_id} to patient {appointment.patient_id}")

    # ===== Projection =====

    def reminder_tasks(self, db: Session, appointment: Appointment) -> List[ReminderTask]:
        """
        Reminder obligations of an appointment.

        Appointments in a terminal state have none: their pending reminders
        are retired, and delivered ones are history in ``reminder_deliveries``.
        """
        if appointment.status not in ACTIVE_STATUSES:
            return []
        deliveries = {
            delivery.offset_label: delivery
            for delivery in db.scalars(
                select(ReminderDelivery).where(ReminderDelivery.appointment_id == appointment.id)
            ).all()
        }
        tasks: List[ReminderTask] = []
        for label in self.offsets:
            delivery = deliveries.get(label)
            tasks.append(ReminderTask(
                appointment_id=appointment.id,
                offset_label=label,
                due_at=calculate_reminder_time(appointment.start_at, label),
                fired=delivery is not None,
                fired_at=delivery.fired_at if delivery else None,
            ))
        return tasks
