"""
Car Booking Service - HTTP surface
==================================
FastAPI routes over ``BookingService``. Authentication happens upstream; the
authenticated identity arrives in the ``X-Actor-Id`` / ``X-Actor-Role`` headers.
"""
import os
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from booking_schemas import Actor, DateRange, PageRequest, ReservationFilters, ReservationStatus, coerce_calendar_date
from catalog import seed_catalog
from config import Config, configure_logging
from persistence.db import SessionLocal, init_db
from service import BookingService, OperationResult
from webhooks.webhooks import router as webhook_router

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "NotFound": 404,
    "Forbidden": 403,
    "Conflict": 409,
    "RefundFailed": 402,
    "ProcessorUnavailable": 503,
    "InternalError": 500,
}


# =============================================================================
# Request models
# =============================================================================

class BookingDates(BaseModel):
    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _calendar_dates(cls, value):
        return coerce_calendar_date(value)

    def date_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)


class PricePreviewRequest(BookingDates):
    vehicle_id: str
    add_ons: List[str] = Field(default_factory=list)


class CreateBookingRequest(PricePreviewRequest):
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    notes: Optional[str] = None


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


class CreateIntentRequest(BaseModel):
    booking_id: str


class ConfirmPaymentRequest(BaseModel):
    booking_id: str
    payment_intent_id: str


# =============================================================================
# Dependencies
# =============================================================================

def get_service(request: Request) -> BookingService:
    return request.app.state.service


def current_actor(x_actor_id: Optional[str] = Header(None), x_actor_role: str = Header("customer")) -> Actor:
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if x_actor_role not in ("customer", "admin"):
        raise HTTPException(status_code=401, detail="Unknown role")
    return Actor(ref=x_actor_id, role=x_actor_role)


def respond(result: OperationResult, success_code: int = 200) -> JSONResponse:
    if result.success:
        return JSONResponse(status_code=success_code, content=result.model_dump(mode="json", exclude={"error"}))
    status_code = ERROR_STATUS_CODES.get(result.error.kind, 400)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json", exclude={"data"}))


def _midnight(value: Optional[date]) -> Optional[datetime]:
    return datetime.combine(value, datetime.min.time()) if value else None


# =============================================================================
# Application
# =============================================================================

def create_app(service: BookingService = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if service is None:
            logger.info(f"Starting {Config.SERVICE_NAME}, database {Config.DATABASE_URL}")
            init_db()
            db = SessionLocal()
            try:
                seed_catalog(db)
            finally:
                db.close()
            app.state.service = BookingService.from_config()
        yield
        app.state.service.shutdown()
        logger.info(f"Shutting down {Config.SERVICE_NAME}")

    app = FastAPI(title="Car Booking Service", description="Reservations, pricing and payments", lifespan=lifespan)
    if service is not None:
        app.state.service = service
    app.include_router(webhook_router)

    @app.post("/api/bookings/calculate", tags=["Bookings"])
    def calculate_price(body: PricePreviewRequest, svc: BookingService = Depends(get_service)):
        return respond(svc.preview_price(body.vehicle_id, body.date_range(), body.add_ons))

    @app.post("/api/bookings", tags=["Bookings"])
    def create_booking(body: CreateBookingRequest, actor: Actor = Depends(current_actor),
                       svc: BookingService = Depends(get_service)):
        result = svc.create_booking(actor, body.vehicle_id, body.date_range(), body.add_ons,
                                    body.pickup_location, body.dropoff_location, body.notes)
        return respond(result, success_code=201)

    @app.get("/api/bookings/my", tags=["Bookings"])
    def my_bookings(status: Optional[ReservationStatus] = None, page: int = Query(1, ge=1),
                    limit: int = Query(10, ge=1, le=100),
                    actor: Actor = Depends(current_actor), svc: BookingService = Depends(get_service)):
        filters = ReservationFilters(status=status)
        return respond(svc.list_my_bookings(actor, filters, PageRequest(page=page, limit=limit)))

    @app.get("/api/bookings", tags=["Bookings"])
    def all_bookings(status: Optional[ReservationStatus] = None, page: int = Query(1, ge=1),
                     limit: int = Query(20, ge=1, le=100),
                     start_date: Optional[date] = None, end_date: Optional[date] = None,
                     actor: Actor = Depends(current_actor), svc: BookingService = Depends(get_service)):
        filters = ReservationFilters(status=status, created_from=_midnight(start_date), created_to=_midnight(end_date))
        return respond(svc.list_all_bookings(actor, filters, PageRequest(page=page, limit=limit)))

    @app.get("/api/bookings/{booking_id}", tags=["Bookings"])
    def get_booking(booking_id: str, actor: Actor = Depends(current_actor),
                    svc: BookingService = Depends(get_service)):
        return respond(svc.get_booking(booking_id, actor))

    @app.put("/api/bookings/{booking_id}/cancel", tags=["Bookings"])
    def cancel_booking(booking_id: str, body: CancelBookingRequest = None, actor: Actor = Depends(current_actor),
                       svc: BookingService = Depends(get_service)):
        reason = body.reason if body else None
        return respond(svc.cancel_booking(booking_id, actor, reason))

    @app.put("/api/bookings/{booking_id}/status", tags=["Bookings"])
    def update_status(booking_id: str, body: StatusUpdateRequest, actor: Actor = Depends(current_actor),
                      svc: BookingService = Depends(get_service)):
        return respond(svc.set_status(booking_id, body.status, actor))

    @app.post("/api/payments/create-intent", tags=["Payments"])
    def create_intent(body: CreateIntentRequest, actor: Actor = Depends(current_actor),
                      svc: BookingService = Depends(get_service)):
        return respond(svc.initiate_payment(body.booking_id, actor))

    @app.post("/api/payments/confirm", tags=["Payments"])
    def confirm_payment(body: ConfirmPaymentRequest, actor: Actor = Depends(current_actor),
                        svc: BookingService = Depends(get_service)):
        return respond(svc.confirm_payment(body.booking_id, body.payment_intent_id, actor))

    @app.get("/api/payments/{booking_id}/status", tags=["Payments"])
    def payment_status(booking_id: str, actor: Actor = Depends(current_actor),
                       svc: BookingService = Depends(get_service)):
        return respond(svc.payment_status(booking_id, actor))

    @app.post("/api/payments/{booking_id}/refund", tags=["Payments"])
    def refund(booking_id: str, actor: Actor = Depends(current_actor), svc: BookingService = Depends(get_service)):
        return respond(svc.refund_payment(booking_id, actor))

    return app


app = create_app()


if __name__ == "__main__":
    configure_logging()
    uvicorn.run(
        "api:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENV", "development") == "development",
        log_level="info",
    )
