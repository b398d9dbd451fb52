import pytest
from sqlalchemy.exc import OperationalError

from hospital_booking.errors import NotFound, SlotConflict, StorageFailure
from hospital_booking.models.appointment import Appointment
from hospital_booking.slot_ledger import find_inconsistencies


def _slot(store, availability_id: str, day: str, start_time: str, end_time: str):
    return store.get(availability_id).find_slot(day, start_time, end_time)


def _booked_count(store) -> int:
    return sum(
        1
        for template in store.templates()
        for day_slots in template.slots.values()
        for slot in day_slots
        if slot.is_booked
    )


def _failing_commit():
    raise OperationalError('COMMIT', {}, Exception('disk I/O error'))


def test_book_flips_slot_and_inserts_row(ledger, store, backend, appointment_db, booking_fields) -> None:
    appointment = ledger.book(**booking_fields())

    assert appointment.id is not None
    assert appointment.day == 'Monday'
    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').status == 'booked'
    assert appointment_db.query(Appointment).count() == 1
    assert backend.save_count == 1
    assert backend.templates[0]['slots']['Monday'][0]['status'] == 'booked'


def test_book_same_slot_twice_conflicts_once(ledger, appointment_db, booking_fields) -> None:
    ledger.book(**booking_fields())

    with pytest.raises(SlotConflict):
        ledger.book(**booking_fields(date='2024-03-18', email='other@example.com'))

    assert appointment_db.query(Appointment).count() == 1


def test_book_unknown_doctor_is_not_found(ledger, booking_fields) -> None:
    with pytest.raises(NotFound) as exception_info:
        ledger.book(**booking_fields(doctor_id='D404'))

    assert exception_info.value.message == 'Doctor not found'


def test_book_missing_weekly_slot_is_not_found(ledger, backend, appointment_db, booking_fields) -> None:
    with pytest.raises(NotFound) as exception_info:
        ledger.book(**booking_fields(date='2024-03-12'))

    assert 'on Tuesday from 09:00 to 09:30' in exception_info.value.message
    assert appointment_db.query(Appointment).count() == 0
    assert backend.save_count == 0


def test_book_reverts_slot_when_commit_fails(
    ledger,
    store,
    backend,
    appointment_db,
    booking_fields,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(appointment_db, 'commit', _failing_commit)

    with pytest.raises(StorageFailure):
        ledger.book(**booking_fields())

    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').status == 'available'
    assert backend.save_count == 0
    monkeypatch.undo()
    assert appointment_db.query(Appointment).count() == 0


def test_book_survives_template_write_failure(ledger, store, backend, booking_fields, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_save(templates):
        raise OSError('read-only file system')

    monkeypatch.setattr(backend, 'save', failing_save)

    appointment = ledger.book(**booking_fields())

    assert appointment.id is not None
    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').is_booked


def test_reschedule_moves_booking_between_slots(ledger, store, appointment_db, booking_fields) -> None:
    appointment = ledger.book(**booking_fields())
    booked_before = _booked_count(store)

    updated = ledger.reschedule(
        appointment.id,
        date='2024-03-12',
        start_time='10:00',
        end_time='10:30',
        purpose_of_meet='Follow-up',
        day='Tuesday',
    )

    assert updated.day == 'Tuesday'
    assert updated.purpose_of_meet == 'Follow-up'
    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').status == 'available'
    assert _slot(store, 'A1', 'Tuesday', '10:00', '10:30').status == 'booked'
    assert _booked_count(store) == booked_before
    assert appointment_db.get(Appointment, appointment.id).date == '2024-03-12'


def test_reschedule_to_booked_slot_changes_nothing(ledger, store, appointment_db, booking_fields) -> None:
    first = ledger.book(**booking_fields())
    ledger.book(**booking_fields(start_time='09:30', end_time='10:00', email='b@example.com'))

    with pytest.raises(SlotConflict):
        ledger.reschedule(
            first.id,
            date='2024-03-18',
            start_time='09:30',
            end_time='10:00',
            purpose_of_meet='Follow-up',
        )

    row = appointment_db.get(Appointment, first.id)
    assert (row.date, row.start_time) == ('2024-03-11', '09:00')
    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').is_booked


def test_reschedule_derives_day_from_date(ledger, store, booking_fields) -> None:
    appointment = ledger.book(**booking_fields())

    updated = ledger.reschedule(
        appointment.id,
        date='2024-03-12',
        start_time='10:00',
        end_time='10:30',
        purpose_of_meet='Follow-up',
        day='Friday',
    )

    assert updated.day == 'Tuesday'


def test_reschedule_unknown_appointment_is_not_found(ledger) -> None:
    with pytest.raises(NotFound) as exception_info:
        ledger.reschedule(999, date='2024-03-12', start_time='10:00', end_time='10:30', purpose_of_meet='x')

    assert exception_info.value.message == 'Appointment not found.'


def test_reschedule_keeps_slots_when_update_fails(
    ledger,
    store,
    appointment_db,
    booking_fields,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    appointment = ledger.book(**booking_fields())
    monkeypatch.setattr(appointment_db, 'commit', _failing_commit)

    with pytest.raises(StorageFailure):
        ledger.reschedule(
            appointment.id,
            date='2024-03-12',
            start_time='10:00',
            end_time='10:30',
            purpose_of_meet='Follow-up',
        )

    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').is_booked
    assert not _slot(store, 'A1', 'Tuesday', '10:00', '10:30').is_booked


def test_cancel_deletes_row_and_frees_slot(ledger, store, backend, appointment_db, booking_fields) -> None:
    appointment = ledger.book(**booking_fields())

    ledger.cancel(appointment.id)

    assert appointment_db.query(Appointment).count() == 0
    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').status == 'available'
    assert backend.templates[0]['slots']['Monday'][0]['status'] == 'available'


def test_cancel_uses_date_when_stored_day_is_stale(ledger, store, appointment_db, booking_fields) -> None:
    appointment = ledger.book(**booking_fields())
    appointment.day = 'Sunday'
    appointment_db.commit()

    ledger.cancel(appointment.id)

    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').status == 'available'


def test_cancel_deletes_row_when_slot_no_longer_exists(ledger, store, backend, appointment_db, booking_fields) -> None:
    appointment = ledger.book(**booking_fields())
    store.get('A1').slots['Monday'].pop(0)
    saves_before = backend.save_count

    ledger.cancel(appointment.id)

    assert appointment_db.query(Appointment).count() == 0
    assert backend.save_count == saves_before


def test_cancel_unknown_appointment_is_not_found(ledger) -> None:
    with pytest.raises(NotFound):
        ledger.cancel(12345)


def test_find_inconsistencies_reports_both_directions(ledger, store, appointment_db, booking_fields) -> None:
    ledger.book(**booking_fields())
    orphan_free = find_inconsistencies(appointment_db, store, ledger.reference)

    assert orphan_free['unbookedAppointments'] == []
    assert orphan_free['sharedSlots'] == []
    assert orphan_free['orphanedSlots'] == [
        {'availabilityId': 'A2', 'day': 'Wednesday', 'startTime': '14:00', 'endTime': '14:30'},
    ]

    _slot(store, 'A1', 'Monday', '09:00', '09:30').status = 'available'
    report = find_inconsistencies(appointment_db, store, ledger.reference)

    assert [entry['reason'] for entry in report['unbookedAppointments']] == ['slot not booked']


def _failing_refresh(instance):
    raise OperationalError('SELECT', {}, Exception('connection reset'))


def test_book_keeps_slot_booked_when_reload_fails_after_commit(
    ledger,
    store,
    backend,
    appointment_db,
    booking_fields,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(appointment_db, 'refresh', _failing_refresh)

    with pytest.raises(StorageFailure):
        ledger.book(**booking_fields())

    assert _slot(store, 'A1', 'Monday', '09:00', '09:30').is_booked
    assert backend.templates[0]['slots']['Monday'][0]['status'] == 'booked'
    monkeypatch.undo()
    assert appointment_db.query(Appointment).count() == 1

    with pytest.raises(SlotConflict):
        ledger.book(**booking_fields(email='other@example.com'))


def test_reschedule_moves_slots_when_reload_fails_after_commit(
    ledger,
    store,
    appointment_db,
    booking_fields,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    appointment = ledger.book(**booking_fields())
    monkeypatch.setattr(appointment_db, 'refresh', _failing_refresh)

    with pytest.raises(StorageFailure):
        ledger.reschedule(
            appointment.id,
            date='2024-03-12',
            start_time='10:00',
            end_time='10:30',
            purpose_of_meet='Follow-up',
        )

    assert not _slot(store, 'A1', 'Monday', '09:00', '09:30').is_booked
    assert _slot(store, 'A1', 'Tuesday', '10:00', '10:30').is_booked


def test_reschedule_with_unknown_doctor_is_not_found(ledger, store, appointment_db) -> None:
    appointment = Appointment(
        patient_name='Jane Doe',
        purpose_of_meet='Checkup',
        doctor_id='D404',
        date='2024-03-11',
        day='Monday',
        start_time='09:00',
        end_time='09:30',
        email='jane@example.com',
    )
    appointment_db.add(appointment)
    appointment_db.commit()
    appointment_db.refresh(appointment)

    with pytest.raises(NotFound) as exception_info:
        ledger.reschedule(
            appointment.id,
            date='2024-03-12',
            start_time='10:00',
            end_time='10:30',
            purpose_of_meet='Follow-up',
        )

    assert exception_info.value.message == 'Doctor associated with appointment not found.'
    assert appointment_db.get(Appointment, appointment.id).date == '2024-03-11'
    assert not _slot(store, 'A1', 'Tuesday', '10:00', '10:30').is_booked
