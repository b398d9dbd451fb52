from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from hospital_booking.core import config


def _connect_args(database_url: str) -> dict:
    # FastAPI runs sync handlers on worker threads.
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(config.DATABASE_URL, connect_args=_connect_args(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'patients' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('patients')}
        migration_steps = [
            ('date', 'ALTER TABLE patients ADD COLUMN date VARCHAR'),
            ('day', 'ALTER TABLE patients ADD COLUMN day VARCHAR'),
            ('email', 'ALTER TABLE patients ADD COLUMN email VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_patients_email ON patients(email)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_patients_doctor_date ON patients("doctorId", date)')
            )

        _appointment_schema_checked = True
