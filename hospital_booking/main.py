import logging
import logging.config

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from hospital_booking.availability import AvailabilityStore, JsonFileAvailabilityBackend
from hospital_booking.core import config
from hospital_booking.database import SessionLocal, engine, ensure_appointment_schema
from hospital_booking.models import appointment
from hospital_booking.reference_data import load_reference_data
from hospital_booking.routes import appointment_routes, directory_routes
from hospital_booking.slot_ledger import find_inconsistencies

logging.config.dictConfig({
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'default': {'format': '%(asctime)s %(levelname)s %(name)s: %(message)s'},
    },
    'handlers': {
        'console': {'class': 'logging.StreamHandler', 'formatter': 'default'},
    },
    'root': {'handlers': ['console'], 'level': 'WARNING'},
    'loggers': {
        'hospital_booking': {'level': config.LOG_LEVEL},
    },
})

app = FastAPI(title='Hospital Booking API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={'error': exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={'error': 'Invalid request.', 'details': jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {'loc': list(error.get('loc', ())), 'msg': error.get('msg', '')}
        for error in exc.errors()
    ]


@app.on_event('startup')
def load_state() -> None:
    config.validate_runtime_config()

    app.state.reference_data = load_reference_data(
        config.HOSPITALS_FILE,
        config.SPECIALISATIONS_FILE,
        config.DOCTORS_FILE,
    )
    app.state.availability_store = AvailabilityStore(
        JsonFileAvailabilityBackend(config.AVAILABILITY_FILE, seed_path=config.AVAILABILITY_SEED_FILE),
        strict_uniqueness=config.STRICT_SLOT_UNIQUENESS,
    )

    try:
        appointment.Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL.')
        return

    report_inconsistencies()


def report_inconsistencies() -> None:
    db = SessionLocal()
    try:
        report = find_inconsistencies(db, app.state.availability_store, app.state.reference_data)
    except SQLAlchemyError:
        logger.exception('Could not compare availability with booked appointments.')
        return
    finally:
        db.close()

    for problem, entries in report.items():
        for entry in entries:
            logger.warning('Availability inconsistency (%s): %s', problem, entry)


@app.get('/')
def root():
    return {'status': 'Hospital Booking API Running'}


app.include_router(directory_routes.router, prefix='/api')
app.include_router(appointment_routes.router, prefix='/api')

