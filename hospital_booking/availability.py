"""Weekly availability templates, their persistence, and slot resolution."""

import copy
import json
import logging
import os
import re
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from hospital_booking.errors import DuplicateSlotError
from hospital_booking.reference_data import ReferenceData

logger = logging.getLogger(__name__)

WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
SLOT_AVAILABLE = 'available'
SLOT_BOOKED = 'booked'


def day_of_week(date_string: str) -> str:
    """Return the English weekday name for a YYYY-MM-DD date.

    Raises ValueError for anything that is not a real calendar date in that
    exact shape. The name comes from a fixed table, not from the locale.
    """
    if not isinstance(date_string, str) or not DATE_PATTERN.match(date_string):
        raise ValueError(f'Invalid date format: {date_string!r}')
    parsed = datetime.strptime(date_string, '%Y-%m-%d')
    return WEEKDAYS[parsed.weekday()]


class Slot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start_time: str
    end_time: str
    status: Literal['available', 'booked'] = SLOT_AVAILABLE

    @property
    def is_booked(self) -> bool:
        return self.status == SLOT_BOOKED


class AvailabilityTemplate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    availability_id: str
    slots: dict[str, list[Slot]]

    @field_validator('slots')
    @classmethod
    def validate_weekdays(cls, value: dict[str, list[Slot]]) -> dict[str, list[Slot]]:
        unknown = [day for day in value if day not in WEEKDAYS]
        if unknown:
            raise ValueError(f'Unknown weekday names: {", ".join(unknown)}')
        return value

    def duplicate_slots(self) -> list[tuple[str, str, str]]:
        duplicates = []
        for day, day_slots in self.slots.items():
            seen: set[tuple[str, str]] = set()
            for slot in day_slots:
                key = (slot.start_time, slot.end_time)
                if key in seen:
                    duplicates.append((day, slot.start_time, slot.end_time))
                seen.add(key)
        return duplicates

    def find_slot(self, day: str, start_time: str, end_time: str) -> Slot | None:
        for slot in self.slots.get(day) or []:
            if slot.start_time == start_time and slot.end_time == end_time:
                return slot
        return None


class AvailabilityBackend(Protocol):
    def load(self) -> list[dict]:
        ...

    def save(self, templates: list[dict]) -> None:
        ...


class JsonFileAvailabilityBackend:
    """Stores every template in one JSON file, rewritten whole on each save."""

    def __init__(self, path: Path, seed_path: Path | None = None):
        self.path = Path(path)
        self.seed_path = Path(seed_path) if seed_path is not None else None

    def load(self) -> list[dict]:
        if not self.path.exists() and self.seed_path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.seed_path, self.path)
            logger.info('Seeded %s from %s', self.path, self.seed_path)
        with self.path.open(encoding='utf-8') as handle:
            return json.load(handle)

    def save(self, templates: list[dict]) -> None:
        directory = self.path.parent
        descriptor, temp_name = tempfile.mkstemp(dir=directory, prefix=f'.{self.path.name}.', suffix='.tmp')
        try:
            with os.fdopen(descriptor, 'w', encoding='utf-8') as handle:
                json.dump(templates, handle, indent=2)
                handle.write('\n')
            os.replace(temp_name, self.path)
        except BaseException:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise


class InMemoryAvailabilityBackend:
    def __init__(self, templates: list[dict] | None = None):
        self.templates = copy.deepcopy(templates or [])
        self.save_count = 0

    def load(self) -> list[dict]:
        return copy.deepcopy(self.templates)

    def save(self, templates: list[dict]) -> None:
        self.templates = copy.deepcopy(templates)
        self.save_count += 1


class AvailabilityStore:
    """Owns the mutable weekly templates for the whole process.

    Callers that check and then change a slot must hold ``lock`` for the whole
    sequence.
    """

    def __init__(self, backend: AvailabilityBackend, strict_uniqueness: bool = True):
        self.backend = backend
        self.lock = RLock()
        self._templates: dict[str, AvailabilityTemplate] = {}
        self.reload(strict_uniqueness=strict_uniqueness)

    def reload(self, strict_uniqueness: bool = True) -> None:
        templates = [AvailabilityTemplate.model_validate(item) for item in self.backend.load()]

        for template in templates:
            duplicates = template.duplicate_slots()
            if not duplicates:
                continue
            described = ', '.join(f'{day} {start}-{end}' for day, start, end in duplicates)
            if strict_uniqueness:
                raise DuplicateSlotError(
                    f'Availability {template.availability_id} has duplicate slots: {described}'
                )
            logger.warning(
                'Availability %s has duplicate slots, the first match wins: %s',
                template.availability_id,
                described,
            )

        with self.lock:
            self._templates = {template.availability_id: template for template in templates}

        logger.info('Loaded %d availability templates', len(templates))

    def get(self, availability_id: str) -> AvailabilityTemplate | None:
        return self._templates.get(availability_id)

    def templates(self) -> list[AvailabilityTemplate]:
        return list(self._templates.values())

    def dump(self) -> list[dict]:
        return [template.model_dump(by_alias=True) for template in self._templates.values()]

    def persist(self) -> None:
        with self.lock:
            self.backend.save(self.dump())


def resolve_slot(
    reference: ReferenceData,
    store: AvailabilityStore,
    doctor_id: str,
    day: str,
    start_time: str,
    end_time: str,
) -> Slot | None:
    doctor = reference.find_doctor(doctor_id)
    if doctor is None:
        return None

    template = store.get(doctor.availability_id)
    if template is None:
        return None

    return template.find_slot(day, start_time, end_time)
