"""Booking, rescheduling and cancellation across the slot templates and the patients table.

Every operation runs under the availability store's lock: the slot is checked,
the row is committed, and only then does the in-memory template change for
good. A failed commit puts the slot back the way it was; once the commit has
succeeded the slot change stands whatever happens afterwards. The template file is
rewritten after the commit; if that write fails the in-memory state stays
authoritative and the next successful write catches the file up.
"""

import logging
from collections import Counter

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_booking.availability import (
    SLOT_AVAILABLE,
    SLOT_BOOKED,
    AvailabilityStore,
    Slot,
    day_of_week,
    resolve_slot,
)
from hospital_booking.errors import NotFound, SlotConflict, StorageFailure
from hospital_booking.models.appointment import Appointment
from hospital_booking.reference_data import ReferenceData

logger = logging.getLogger(__name__)


class SlotLedger:
    def __init__(self, db: Session, store: AvailabilityStore, reference: ReferenceData):
        self.db = db
        self.store = store
        self.reference = reference

    def book(
        self,
        *,
        patient_name: str,
        phone_no: str | None,
        age: int | None,
        purpose_of_meet: str,
        doctor_id: str,
        date: str,
        start_time: str,
        end_time: str,
        email: str,
    ) -> Appointment:
        with self.store.lock:
            doctor = self.reference.find_doctor(doctor_id)
            if doctor is None:
                raise NotFound('Doctor not found')

            day = day_of_week(date)
            slot = resolve_slot(self.reference, self.store, doctor_id, day, start_time, end_time)
            if slot is None:
                raise NotFound(
                    f'No weekly availability found for doctor {doctor.name} on {day} '
                    f'from {start_time} to {end_time}.'
                )
            if slot.is_booked:
                raise SlotConflict(
                    f'The slot {start_time}-{end_time} on {day} is already booked for doctor '
                    f'{doctor.name}. Please choose another slot or date.'
                )

            slot.status = SLOT_BOOKED
            appointment = Appointment(
                patient_name=patient_name,
                phone_no=phone_no,
                age=age,
                purpose_of_meet=purpose_of_meet,
                doctor_id=doctor_id,
                date=date,
                day=day,
                start_time=start_time,
                end_time=end_time,
                email=email,
            )
            try:
                self.db.add(appointment)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                slot.status = SLOT_AVAILABLE
                logger.exception('Database insert failed while booking %s %s %s-%s', doctor_id, date, start_time, end_time)
                raise StorageFailure('Failed to book slot due to database error.') from exc

            self._persist()
            self._reload(appointment)
            logger.info('Booked appointment %s with doctor %s on %s %s-%s', appointment.id, doctor_id, date, start_time, end_time)
            return appointment

    def reschedule(
        self,
        appointment_id: int,
        *,
        date: str,
        start_time: str,
        end_time: str,
        purpose_of_meet: str,
        day: str | None = None,
    ) -> Appointment:
        with self.store.lock:
            appointment = self._get_appointment(appointment_id)

            doctor = self.reference.find_doctor(appointment.doctor_id)
            if doctor is None:
                raise NotFound('Doctor associated with appointment not found.')

            new_day = day_of_week(date)
            if day and day != new_day:
                logger.warning(
                    'Reschedule of appointment %s sent day %s but %s falls on %s; using %s',
                    appointment_id,
                    day,
                    date,
                    new_day,
                    new_day,
                )

            new_slot = resolve_slot(self.reference, self.store, appointment.doctor_id, new_day, start_time, end_time)
            if new_slot is None:
                raise NotFound(
                    f'No weekly availability found for doctor {doctor.name} on {new_day} '
                    f'from {start_time} to {end_time}.'
                )
            if new_slot.is_booked:
                raise SlotConflict(
                    f'The requested slot {start_time}-{end_time} on {new_day} is already booked. '
                    'Please choose another slot or date.'
                )

            previous = (appointment.date, appointment.day, appointment.start_time, appointment.end_time)

            appointment.date = date
            appointment.day = new_day
            appointment.start_time = start_time
            appointment.end_time = end_time
            appointment.purpose_of_meet = purpose_of_meet
            doctor_id = appointment.doctor_id
            try:
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception('Database update failed while rescheduling appointment %s', appointment_id)
                raise StorageFailure('Failed to update appointment due to database error.') from exc

            old_slot = self._resolve_previous_slot(appointment_id, doctor_id, *previous)
            if old_slot is not None:
                old_slot.status = SLOT_AVAILABLE
            new_slot.status = SLOT_BOOKED

            self._persist()
            self._reload(appointment)
            logger.info('Rescheduled appointment %s to %s %s-%s', appointment_id, date, start_time, end_time)
            return appointment

    def cancel(self, appointment_id: int) -> None:
        with self.store.lock:
            appointment = self._get_appointment(appointment_id)
            doctor_id = appointment.doctor_id
            previous = (appointment.date, appointment.day, appointment.start_time, appointment.end_time)

            try:
                self.db.delete(appointment)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception('Database delete failed while cancelling appointment %s', appointment_id)
                raise StorageFailure('Failed to cancel appointment due to database error.') from exc

            slot = self._resolve_previous_slot(appointment_id, doctor_id, *previous)
            if slot is not None:
                slot.status = SLOT_AVAILABLE
                self._persist()
            logger.info('Cancelled appointment %s', appointment_id)

    def _get_appointment(self, appointment_id: int) -> Appointment:
        try:
            appointment = self.db.get(Appointment, appointment_id)
        except SQLAlchemyError as exc:
            logger.exception('Database select failed for appointment %s', appointment_id)
            raise StorageFailure('Failed to retrieve appointment details.') from exc
        if appointment is None:
            raise NotFound('Appointment not found.')
        return appointment

    def _resolve_previous_slot(
        self,
        appointment_id: int,
        doctor_id: str,
        date: str | None,
        stored_day: str | None,
        start_time: str,
        end_time: str,
    ) -> Slot | None:
        # The stored day is a cache of the date; prefer re-deriving it.
        try:
            derived_day = day_of_week(date)
        except ValueError:
            derived_day = None

        if derived_day and stored_day and derived_day != stored_day:
            logger.warning(
                'Appointment %s stores day %s but its date %s falls on %s',
                appointment_id,
                stored_day,
                date,
                derived_day,
            )

        for day in dict.fromkeys(candidate for candidate in (derived_day, stored_day) if candidate):
            slot = resolve_slot(self.reference, self.store, doctor_id, day, start_time, end_time)
            if slot is not None:
                return slot

        logger.warning(
            'Could not locate the weekly slot held by appointment %s (%s %s-%s); leaving it unchanged',
            appointment_id,
            date,
            start_time,
            end_time,
        )
        return None

    def _reload(self, appointment: Appointment) -> None:
        # The row is already committed; slot state must not be rolled back here.
        try:
            self.db.refresh(appointment)
        except SQLAlchemyError as exc:
            logger.exception('Reloading committed appointment failed')
            raise StorageFailure('Appointment was saved but could not be reloaded.') from exc

    def _persist(self) -> None:
        try:
            self.store.persist()
        except OSError:
            logger.exception('Writing availability templates failed; in-memory state kept')


def find_inconsistencies(db: Session, store: AvailabilityStore, reference: ReferenceData) -> dict[str, list[dict]]:
    """Compare booked slots against appointment rows.

    Returns booked slots that no appointment holds, appointments whose slot is
    missing or not booked, and slots held by more than one appointment.
    """
    claims: Counter = Counter()
    unbooked_appointments = []

    for appointment in db.query(Appointment).order_by(Appointment.id.asc()).all():
        doctor = reference.find_doctor(appointment.doctor_id)
        try:
            day = day_of_week(appointment.date)
        except ValueError:
            day = appointment.day
        slot = resolve_slot(reference, store, appointment.doctor_id, day, appointment.start_time, appointment.end_time)

        if doctor is None or slot is None or not slot.is_booked:
            unbooked_appointments.append({
                'appointmentId': appointment.id,
                'doctorId': appointment.doctor_id,
                'day': day,
                'startTime': appointment.start_time,
                'endTime': appointment.end_time,
                'reason': 'slot missing' if slot is None else 'slot not booked',
            })
            continue

        claims[(doctor.availability_id, day, slot.start_time, slot.end_time)] += 1

    orphaned_slots = []
    for template in store.templates():
        for day, day_slots in template.slots.items():
            for slot in day_slots:
                if slot.is_booked and not claims[(template.availability_id, day, slot.start_time, slot.end_time)]:
                    orphaned_slots.append({
                        'availabilityId': template.availability_id,
                        'day': day,
                        'startTime': slot.start_time,
                        'endTime': slot.end_time,
                    })

    shared_slots = [
        {'availabilityId': availability_id, 'day': day, 'startTime': start_time, 'endTime': end_time, 'appointments': count}
        for (availability_id, day, start_time, end_time), count in claims.items()
        if count > 1
    ]

    return {
        'orphanedSlots': orphaned_slots,
        'unbookedAppointments': unbooked_appointments,
        'sharedSlots': shared_slots,
    }
