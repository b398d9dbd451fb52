import os
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


PACKAGE_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_DATABASE_URL = "sqlite:///./hospital.db"

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

DATA_DIR = Path(os.getenv("DATA_DIR", str(PACKAGE_DATA_DIR)))
HOSPITALS_FILE = DATA_DIR / "city.json"
SPECIALISATIONS_FILE = DATA_DIR / "spel.json"
DOCTORS_FILE = DATA_DIR / "doc.json"
# Seed copy; bookings rewrite AVAILABILITY_FILE, which must be writable.
AVAILABILITY_SEED_FILE = DATA_DIR / "availability.json"
AVAILABILITY_FILE = Path(os.getenv("AVAILABILITY_FILE", "./availability.json"))

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), default=["http://localhost:4200"])

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

STRICT_SLOT_UNIQUENESS = _get_bool(os.getenv("STRICT_SLOT_UNIQUENESS"), default=True)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and DATABASE_URL == DEFAULT_DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set in production.")
    if not DATA_DIR.is_dir():
        raise RuntimeError(f"DATA_DIR {DATA_DIR} does not exist.")
