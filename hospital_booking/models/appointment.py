"""Appointment model definitions."""

from sqlalchemy import Column, Integer, String
from hospital_booking.database import Base


class Appointment(Base):
    """Represents a dated booking against one weekly slot."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_name = Column('patientName', String)
    phone_no = Column('phoneNo', String)
    age = Column(Integer)
    purpose_of_meet = Column('purposeOfMeet', String)
    doctor_id = Column('doctorId', String)
    date = Column(String)  # YYYY-MM-DD
    day = Column(String)  # weekday name derived from date
    start_time = Column('startTime', String)
    end_time = Column('endTime', String)
    email = Column(String)
