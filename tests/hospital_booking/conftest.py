import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from hospital_booking.availability import AvailabilityStore, InMemoryAvailabilityBackend  # noqa: E402
from hospital_booking.database import Base  # noqa: E402
from hospital_booking.models.appointment import Appointment  # noqa: E402
from hospital_booking.reference_data import Doctor, Hospital, ReferenceData  # noqa: E402
from hospital_booking.slot_ledger import SlotLedger  # noqa: E402

HOSPITALS = [
    {
        'id': 'H1',
        'name': 'St. Mary Hospital',
        'city': 'Paris',
        'branches': [
            {'id': 'B1', 'name': 'Central', 'specializationIds': ['S1', 'S2']},
            {'id': 'B2', 'name': 'Nord', 'specializationIds': ['S3']},
        ],
    },
    {
        'id': 'H2',
        'name': 'Riverside Clinic',
        'city': 'Lyon',
        'branches': [
            {'id': 'B3', 'name': 'Presqu\'ile', 'specializationIds': ['S1']},
        ],
    },
]

SPECIALISATIONS = [
    {'id': 'S1', 'name': 'Cardiology'},
    {'id': 'S2', 'name': 'Dermatology'},
    {'id': 'S3', 'name': 'Pediatrics'},
]

DOCTORS = [
    {'id': 'D1', 'name': 'Dr. Alice Martin', 'specializationId': 'S1', 'branchId': 'B1', 'availabilityId': 'A1'},
    {'id': 'D2', 'name': 'Dr. Bruno Leroy', 'specializationId': 'S2', 'branchId': 'B1', 'availabilityId': 'A2'},
    {'id': 'D3', 'name': 'Dr. Chloe Dubois', 'specializationId': 'S3', 'branchId': 'B2', 'availabilityId': 'A9'},
]

TEMPLATES = [
    {
        'availabilityId': 'A1',
        'slots': {
            'Monday': [
                {'startTime': '09:00', 'endTime': '09:30', 'status': 'available'},
                {'startTime': '09:30', 'endTime': '10:00', 'status': 'available'},
            ],
            'Tuesday': [
                {'startTime': '10:00', 'endTime': '10:30', 'status': 'available'},
            ],
        },
    },
    {
        'availabilityId': 'A2',
        'slots': {
            'Wednesday': [
                {'startTime': '14:00', 'endTime': '14:30', 'status': 'booked'},
            ],
        },
    },
]


@pytest.fixture
def reference() -> ReferenceData:
    return ReferenceData(
        hospitals=[Hospital.model_validate(item) for item in HOSPITALS],
        specialisations=SPECIALISATIONS,
        doctors=[Doctor.model_validate(item) for item in DOCTORS],
    )


@pytest.fixture
def backend() -> InMemoryAvailabilityBackend:
    return InMemoryAvailabilityBackend(TEMPLATES)


@pytest.fixture
def store(backend) -> AvailabilityStore:
    return AvailabilityStore(backend)


@pytest.fixture
def appointment_db():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[Appointment.__table__])

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__])


@pytest.fixture
def ledger(appointment_db, store, reference) -> SlotLedger:
    return SlotLedger(db=appointment_db, store=store, reference=reference)


@pytest.fixture
def booking_fields():
    def build(**overrides) -> dict:
        fields = {
            'patient_name': 'Jane Doe',
            'phone_no': '0601020304',
            'age': 34,
            'purpose_of_meet': 'Checkup',
            'doctor_id': 'D1',
            'date': '2024-03-11',
            'start_time': '09:00',
            'end_time': '09:30',
            'email': 'jane@example.com',
        }
        fields.update(overrides)
        return fields

    return build
