"""
REST API записи

Публичные эндпоинты для страницы записи клиента и эндпоинты владельца
(Bearer API_TOKEN) для управления записями, блокировками и расписанием.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import (
    API_TOKEN,
    CORS_ORIGINS,
    ERROR_INVALID_STATUS,
    ERROR_NOT_FOUND,
    ERROR_OUTSIDE_WORKING_HOURS,
    ERROR_SERVICE_UNAVAILABLE,
    ERROR_SLOT_IN_PAST,
    ERROR_SLOT_TAKEN,
)
from database.db_adapter import db_adapter
from services.availability_service import AvailabilityService
from services.booking_service import BookingService
from utils.error_handler import BookingError, InvalidTimeFormat, format_validation_error
from validation.schemas import (
    AppointmentCancelInput,
    AppointmentStatusInput,
    AppointmentUpdateInput,
    AvailableSlotsQuery,
    BookingCreateInput,
    BusyDaysQuery,
    BusySlotsQuery,
    ClientCancelInput,
    ServiceUpdateInput,
    TimeBlockInput,
    WeekScheduleInput,
    WorkingHoursInput,
)

logger = logging.getLogger(__name__)

# Код ошибки бронирования -> HTTP статус
STATUS_BY_CODE = {
    ERROR_SLOT_TAKEN: 409,
    ERROR_NOT_FOUND: 404,
    ERROR_SERVICE_UNAVAILABLE: 404,
    ERROR_OUTSIDE_WORKING_HOURS: 400,
    ERROR_SLOT_IN_PAST: 400,
    ERROR_INVALID_STATUS: 400,
}


def _error(status_code: int, message: str, code: Optional[str] = None) -> JSONResponse:
    content = {"error": message}
    if code:
        content["code"] = code
    return JSONResponse(status_code=status_code, content=content)


def _booking_response(result, status_code: int = 200) -> JSONResponse:
    success, code, appointment_id = result
    if success:
        return JSONResponse(status_code=status_code, content={"success": True, "id": appointment_id})
    return _error(STATUS_BY_CODE.get(code, 500), code, code)


# === АВТОРИЗАЦИЯ ===


async def verify_token(authorization: str = Header(None)):
    """Проверка API токена владельца"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header missing")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization format")

    token = authorization[len("Bearer "):]

    if token != API_TOKEN:
        logger.warning("🚨 Invalid API token attempt")
        raise HTTPException(status_code=403, detail="Invalid API token")

    return True


def create_app(availability_service: AvailabilityService, booking_service: BookingService) -> FastAPI:
    """Собрать FastAPI приложение поверх готовых сервисов"""
    app = FastAPI(
        title="LookTime Booking API",
        description="Свободные слоты, занятость дней и управление записями",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.availability = availability_service
    app.state.booking = booking_service

    # === ОБРАБОТКА ОШИБОК ===

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(400, format_validation_error(exc))

    @app.exception_handler(InvalidTimeFormat)
    async def invalid_time_handler(request: Request, exc: InvalidTimeFormat):
        return _error(400, str(exc))

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        return _error(STATUS_BY_CODE.get(exc.code, 500), str(exc), exc.code)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(400, str(exc))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled API error on {request.url.path}: {exc}", exc_info=True)
        return _error(500, "Internal server error")

    # === ПУБЛИЧНЫЕ ЭНДПОИНТЫ ===

    @app.get("/health")
    async def health_check():
        """Health check для мониторинга"""
        db_ok = False
        if db_adapter.is_initialized:
            try:
                db_ok = await db_adapter.fetchval("SELECT 1") == 1
            except Exception as e:
                logger.error(f"Health check failed: {e}")

        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={
                "status": "healthy" if db_ok else "unhealthy",
                "database": "ok" if db_ok else "error",
                "timestamp": datetime.now().isoformat(),
            },
        )

    @app.post("/get-available-slots")
    async def get_available_slots(query: AvailableSlotsQuery):
        slots = await app.state.availability.get_available_slots(
            query.profile_id, query.date, query.service_id
        )
        return {"slots": slots}

    @app.post("/get-busy-days")
    async def get_busy_days(query: BusyDaysQuery):
        days = await app.state.availability.get_busy_days(
            query.profile_id, query.start_date, query.end_date
        )
        unavailable = await app.state.availability.get_unavailable_dates(
            query.profile_id, query.start_date, query.end_date
        )
        return {
            "counts": {date_str: day.occupied for date_str, day in days.items() if day.occupied},
            "days": {date_str: day.to_dict() for date_str, day in days.items()},
            "unavailable": unavailable,
        }

    @app.post("/get-busy-slots")
    async def get_busy_slots(query: BusySlotsQuery):
        slots = await app.state.availability.get_busy_slots(query.profile_id, query.date)
        return {"slots": slots}

    @app.post("/get-booking-data")
    async def get_booking_data(query: BusyDaysQuery):
        return await app.state.availability.get_booking_data(
            query.profile_id, query.start_date, query.end_date
        )

    @app.get("/profiles/{slug}")
    async def get_booking_page(slug: str):
        return await app.state.availability.get_booking_page(slug)

    @app.post("/appointments")
    async def create_appointment(data: BookingCreateInput):
        return _booking_response(await app.state.booking.create_booking(data), status_code=201)

    @app.post("/appointments/{appointment_id}/client-cancel")
    async def client_cancel_appointment(appointment_id: str, data: ClientCancelInput):
        return _booking_response(
            await app.state.booking.cancel_appointment(
                data.profile_id, appointment_id, data.reason, client_phone=data.client_phone
            )
        )

    # === ЭНДПОИНТЫ ВЛАДЕЛЬЦА ===

    @app.patch("/appointments/{appointment_id}", dependencies=[Depends(verify_token)])
    async def update_appointment(
        appointment_id: str, data: AppointmentUpdateInput, profile_id: str = Query(...)
    ):
        return _booking_response(
            await app.state.booking.update_appointment(profile_id, appointment_id, data)
        )

    @app.post("/appointments/{appointment_id}/cancel", dependencies=[Depends(verify_token)])
    async def cancel_appointment(
        appointment_id: str, data: AppointmentCancelInput, profile_id: str = Query(...)
    ):
        return _booking_response(
            await app.state.booking.cancel_appointment(profile_id, appointment_id, data.reason)
        )

    @app.post("/appointments/{appointment_id}/status", dependencies=[Depends(verify_token)])
    async def change_status(
        appointment_id: str, data: AppointmentStatusInput, profile_id: str = Query(...)
    ):
        return _booking_response(
            await app.state.booking.change_status(profile_id, appointment_id, data.status)
        )

    @app.post("/blocks", dependencies=[Depends(verify_token)])
    async def block_time(data: TimeBlockInput, profile_id: str = Query(...)):
        return _booking_response(await app.state.booking.block_time(profile_id, data), status_code=201)

    @app.put("/working-hours", dependencies=[Depends(verify_token)])
    async def replace_working_hours(data: WeekScheduleInput, profile_id: str = Query(...)):
        return _booking_response(await app.state.booking.replace_working_hours(profile_id, data))

    @app.patch("/working-hours", dependencies=[Depends(verify_token)])
    async def update_working_day(data: WorkingHoursInput, profile_id: str = Query(...)):
        return _booking_response(await app.state.booking.update_working_day(profile_id, data))

    @app.patch("/services/{service_id}", dependencies=[Depends(verify_token)])
    async def update_service(service_id: str, data: ServiceUpdateInput, profile_id: str = Query(...)):
        return _booking_response(await app.state.booking.update_service(profile_id, service_id, data))

    return app
