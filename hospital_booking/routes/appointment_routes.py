import re

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_booking.availability import DATE_PATTERN, day_of_week
from hospital_booking.dependencies import ensure_database_ready, get_db, get_reference_data, get_slot_ledger
from hospital_booking.errors import BookingError
from hospital_booking.models.appointment import Appointment
from hospital_booking.reference_data import ReferenceData
from hospital_booking.slot_ledger import SlotLedger

router = APIRouter(tags=['appointments'])

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
FORM_CONTENT_TYPES = ('application/x-www-form-urlencoded', 'multipart/form-data')


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookSlotRequest(CamelModel):
    patient_name: str | None = None
    phone_no: str | None = None
    age: int | None = None
    purpose_of_meet: str | None = None
    doctor_id: str | None = None
    date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    email: str | None = None

    @field_validator('phone_no', 'doctor_id', mode='before')
    @classmethod
    def accept_numbers(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator('age', mode='before')
    @classmethod
    def blank_age_is_missing(cls, value):
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator(
        'patient_name', 'purpose_of_meet', 'doctor_id', 'date', 'start_time', 'end_time', 'email'
    )
    @classmethod
    def strip_blank(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class RescheduleRequest(CamelModel):
    day: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    purpose_of_meet: str | None = None
    date: str | None = None

    @field_validator('day', 'start_time', 'end_time', 'purpose_of_meet', 'date')
    @classmethod
    def strip_blank(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class BookingResponse(CamelModel):
    message: str
    booking_id: int
    patient_name: str
    phone_no: str | None = None
    age: int | None = None
    purpose_of_meet: str
    doctor_id: str
    date: str
    day: str
    start_time: str
    end_time: str
    email: str


class PatientResponse(CamelModel):
    id: int
    patient_name: str | None = None
    phone_no: str | None = None
    age: int | None = None
    purpose_of_meet: str | None = None
    doctor_id: str | None = None
    date: str | None = None
    day: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    email: str | None = None
    doctor_name: str | None = None
    specialization_id: str | None = None
    branch_id: str | None = None


class RescheduleResponse(CamelModel):
    message: str
    patient_id: int
    doctor_id: str
    new_date: str
    new_day: str
    new_start_time: str
    new_end_time: str
    new_purpose_of_meet: str


class CancelResponse(CamelModel):
    message: str
    patient_id: int


def is_valid_date(value: str | None) -> bool:
    if not value or not DATE_PATTERN.match(value):
        return False
    try:
        day_of_week(value)
    except ValueError:
        return False
    return True


def is_valid_email(value: str | None) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value) is not None


def validate_booking_request(data: BookSlotRequest) -> None:
    if not is_valid_date(data.date):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid date format. Please use YYYY-MM-DD.',
        )

    required = (
        data.patient_name,
        data.doctor_id,
        data.date,
        data.start_time,
        data.end_time,
        data.email,
        data.purpose_of_meet,
    )
    if not all(required):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                'Missing required fields. Ensure patientName, doctorId, date, startTime, endTime, '
                'email, and purposeOfMeet are provided.'
            ),
        )

    if not is_valid_email(data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid email format.',
        )


def validate_reschedule_request(data: RescheduleRequest) -> None:
    if not is_valid_date(data.date):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid date format for rescheduling. Please use YYYY-MM-DD.',
        )

    if not all((data.day, data.start_time, data.end_time, data.purpose_of_meet)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                'Missing required fields for rescheduling. Provide day, startTime, endTime, '
                'purposeOfMeet, and date.'
            ),
        )


async def read_body_fields(request: Request) -> dict:
    """Return the request body as a flat dict from JSON, urlencoded or multipart input."""
    content_type = request.headers.get('content-type', '').lower()
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Request body must be JSON or form data.',
        ) from exc

    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Request body must be an object.',
        )
    return payload


def parse_body(model: type[CamelModel], fields: dict) -> CamelModel:
    try:
        return model.model_validate(fields)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


async def read_booking_body(request: Request) -> BookSlotRequest:
    return parse_body(BookSlotRequest, await read_body_fields(request))


async def read_reschedule_body(request: Request) -> RescheduleRequest:
    return parse_body(RescheduleRequest, await read_body_fields(request))


def to_patient_response(appointment: Appointment, reference: ReferenceData) -> PatientResponse:
    doctor = reference.find_doctor(appointment.doctor_id)
    return PatientResponse(
        id=appointment.id,
        patient_name=appointment.patient_name,
        phone_no=appointment.phone_no,
        age=appointment.age,
        purpose_of_meet=appointment.purpose_of_meet,
        doctor_id=appointment.doctor_id,
        date=appointment.date,
        day=appointment.day,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        email=appointment.email,
        doctor_name=doctor.name if doctor else None,
        specialization_id=doctor.specialization_id if doctor else None,
        branch_id=doctor.branch_id if doctor else None,
    )


@router.post('/book-slot', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def book_slot(
    data: BookSlotRequest = Depends(read_booking_body),
    ledger: SlotLedger = Depends(get_slot_ledger),
):
    validate_booking_request(data)

    ensure_database_ready()

    try:
        appointment = ledger.book(
            patient_name=data.patient_name,
            phone_no=data.phone_no,
            age=data.age,
            purpose_of_meet=data.purpose_of_meet,
            doctor_id=data.doctor_id,
            date=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            email=data.email,
        )
    except BookingError as exc:
        raise exc.to_http() from exc

    return BookingResponse(
        message='Booking confirmed',
        booking_id=appointment.id,
        patient_name=appointment.patient_name,
        phone_no=appointment.phone_no,
        age=appointment.age,
        purpose_of_meet=appointment.purpose_of_meet,
        doctor_id=appointment.doctor_id,
        date=appointment.date,
        day=appointment.day,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        email=appointment.email,
    )


@router.get('/patients', response_model=list[PatientResponse])
def list_patients(
    db: Session = Depends(get_db),
    reference: ReferenceData = Depends(get_reference_data),
):
    ensure_database_ready()

    try:
        appointments = db.query(Appointment).order_by(Appointment.id.asc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to retrieve patient data.',
        ) from exc

    return [to_patient_response(appointment, reference) for appointment in appointments]


@router.get('/patients/email/{email}', response_model=PatientResponse)
def get_patient_by_email(
    email: str,
    db: Session = Depends(get_db),
    reference: ReferenceData = Depends(get_reference_data),
):
    if not is_valid_email(email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid email format provided.',
        )

    ensure_database_ready()

    try:
        appointment = db.query(Appointment).filter(
            Appointment.email == email,
        ).order_by(Appointment.id.asc()).first()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to retrieve patient data by email.',
        ) from exc

    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Patient with this email not found.',
        )

    return to_patient_response(appointment, reference)


@router.get('/patients/{patient_id}', response_model=PatientResponse)
def get_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    reference: ReferenceData = Depends(get_reference_data),
):
    ensure_database_ready()

    try:
        appointment = db.get(Appointment, patient_id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to retrieve patient data.',
        ) from exc

    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Patient not found',
        )

    return to_patient_response(appointment, reference)


@router.put('/appointments/{patient_id}', response_model=RescheduleResponse)
def reschedule_appointment(
    patient_id: int,
    data: RescheduleRequest = Depends(read_reschedule_body),
    ledger: SlotLedger = Depends(get_slot_ledger),
):
    validate_reschedule_request(data)

    ensure_database_ready()

    try:
        appointment = ledger.reschedule(
            patient_id,
            date=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            purpose_of_meet=data.purpose_of_meet,
            day=data.day,
        )
    except BookingError as exc:
        raise exc.to_http() from exc

    return RescheduleResponse(
        message='Appointment rescheduled successfully',
        patient_id=patient_id,
        doctor_id=appointment.doctor_id,
        new_date=appointment.date,
        new_day=appointment.day,
        new_start_time=appointment.start_time,
        new_end_time=appointment.end_time,
        new_purpose_of_meet=appointment.purpose_of_meet,
    )


@router.delete('/appointments/{patient_id}', response_model=CancelResponse)
def cancel_appointment(patient_id: int, ledger: SlotLedger = Depends(get_slot_ledger)):
    ensure_database_ready()

    try:
        ledger.cancel(patient_id)
    except BookingError as exc:
        raise exc.to_http() from exc

    return CancelResponse(message='Appointment cancelled successfully', patient_id=patient_id)
