from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_booking.availability import AvailabilityStore
from hospital_booking.database import SessionLocal, ensure_appointment_schema
from hospital_booking.reference_data import ReferenceData
from hospital_booking.slot_ledger import SlotLedger


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_reference_data(request: Request) -> ReferenceData:
    return request.app.state.reference_data


def get_availability_store(request: Request) -> AvailabilityStore:
    return request.app.state.availability_store


def get_slot_ledger(
    db: Session = Depends(get_db),
    store: AvailabilityStore = Depends(get_availability_store),
    reference: ReferenceData = Depends(get_reference_data),
) -> SlotLedger:
    return SlotLedger(db=db, store=store, reference=reference)


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Database unavailable. Verify DATABASE_URL.',
        ) from exc
