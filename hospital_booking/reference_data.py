"""Read-only hospital, specialisation and doctor directory."""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class DirectoryModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow', frozen=True)


class Branch(DirectoryModel):
    specialization_ids: list[str] = Field(default_factory=list)


class Hospital(DirectoryModel):
    city: str
    branches: list[Branch] = Field(default_factory=list)


class Doctor(DirectoryModel):
    id: str
    name: str
    specialization_id: str
    branch_id: str
    availability_id: str


class ReferenceData:
    def __init__(
        self,
        hospitals: list[Hospital],
        specialisations: list[dict[str, Any]],
        doctors: list[Doctor],
    ):
        self.hospitals = hospitals
        self.specialisations = specialisations
        self.doctors = doctors
        self._doctors_by_id = {doctor.id: doctor for doctor in doctors}

    def find_doctor(self, doctor_id: str) -> Doctor | None:
        return self._doctors_by_id.get(doctor_id)

    def filter_hospitals(self, city: str | None = None, specialization: str | None = None) -> list[dict]:
        results = list(self.hospitals)

        if city:
            normalized_city = city.lower()
            results = [hospital for hospital in results if hospital.city.lower() == normalized_city]

        if specialization:
            narrowed = []
            for hospital in results:
                matching_branches = [
                    branch for branch in hospital.branches if specialization in branch.specialization_ids
                ]
                if matching_branches:
                    narrowed.append(hospital.model_copy(update={'branches': matching_branches}))
            results = narrowed

        return [hospital.model_dump(by_alias=True) for hospital in results]

    def filter_doctors(self, branch_id: str | None = None, specialization: str | None = None) -> list[dict]:
        results = list(self.doctors)

        if branch_id:
            results = [doctor for doctor in results if doctor.branch_id == branch_id]

        if specialization:
            results = [doctor for doctor in results if doctor.specialization_id == specialization]

        return [doctor.model_dump(by_alias=True) for doctor in results]


def _read_json(path: Path) -> Any:
    with path.open(encoding='utf-8') as handle:
        return json.load(handle)


def load_reference_data(hospitals_file: Path, specialisations_file: Path, doctors_file: Path) -> ReferenceData:
    hospitals = [Hospital.model_validate(item) for item in _read_json(hospitals_file)]
    specialisations = _read_json(specialisations_file)
    doctors = [Doctor.model_validate(item) for item in _read_json(doctors_file)]

    logger.info(
        'Loaded %d hospitals, %d specialisations and %d doctors',
        len(hospitals),
        len(specialisations),
        len(doctors),
    )
    return ReferenceData(hospitals=hospitals, specialisations=specialisations, doctors=doctors)
