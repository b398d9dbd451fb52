from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_booking.availability import AvailabilityStore
from hospital_booking.dependencies import (
    ensure_database_ready,
    get_availability_store,
    get_db,
    get_reference_data,
)
from hospital_booking.reference_data import ReferenceData
from hospital_booking.slot_ledger import find_inconsistencies

router = APIRouter(tags=['directory'])


@router.get('/hospitals')
def list_hospitals(
    city: str | None = Query(default=None),
    specialization: str | None = Query(default=None),
    reference: ReferenceData = Depends(get_reference_data),
):
    return reference.filter_hospitals(city=city, specialization=specialization)


@router.get('/specialisations')
def list_specialisations(reference: ReferenceData = Depends(get_reference_data)):
    return reference.specialisations


@router.get('/doctors')
def list_doctors(
    branch_id: str | None = Query(default=None, alias='branchId'),
    specialization: str | None = Query(default=None),
    reference: ReferenceData = Depends(get_reference_data),
):
    return reference.filter_doctors(branch_id=branch_id, specialization=specialization)


@router.get('/availability/{doctor_id}')
def get_doctor_availability(
    doctor_id: str,
    reference: ReferenceData = Depends(get_reference_data),
    store: AvailabilityStore = Depends(get_availability_store),
):
    doctor = reference.find_doctor(doctor_id)
    if doctor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found')

    template = store.get(doctor.availability_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Availability not found')

    with store.lock:
        slots = template.model_dump(by_alias=True)['slots']

    return {
        'doctor': doctor.name,
        'specializationId': doctor.specialization_id,
        'branchId': doctor.branch_id,
        'availability': slots,
    }


@router.get('/availability-id/{availability_id}')
def get_availability_by_id(
    availability_id: str,
    store: AvailabilityStore = Depends(get_availability_store),
):
    template = store.get(availability_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Availability not found')

    with store.lock:
        return template.model_dump(by_alias=True)['slots']


@router.get('/availability-consistency')
def get_availability_consistency(
    db: Session = Depends(get_db),
    store: AvailabilityStore = Depends(get_availability_store),
    reference: ReferenceData = Depends(get_reference_data),
):
    ensure_database_ready()

    try:
        with store.lock:
            return find_inconsistencies(db, store, reference)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to retrieve patient data.',
        ) from exc
