import os
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from dotenv import load_dotenv

load_dotenv()

from db.deps import get_db
from db.session import SessionLocalRental
from schemas.rentals import CreateReservationDto, ReservationDecisionRequest, SweepRequest
from services.errors import RentalLifecycleError
from services.expiration_service import DEFAULT_SWEEP_INTERVAL_SECONDS, ExpirationTicker, sweep_expired_rentals
from services.reminder_service import (
    DEFAULT_REMINDER_INTERVAL_SECONDS,
    ReminderTicker,
    create_reminder,
    list_pending_notifications,
    process_available_reminders,
    serialize_notification,
)
from services.rental_service import (
    accept_return,
    decline_return,
    get_rental_for_document,
    list_return_requests,
    list_user_rentals,
    list_user_transactions,
    parse_rental_filter,
    request_return,
    serialize_rental,
    serialize_transaction,
)
from services.reservation_service import (
    accept_reservation,
    cancel_reservation,
    create_reservation,
    decline_reservation,
    list_reservations,
    list_user_reservations,
    parse_status_filter,
    serialize_reservation,
)


HTTP_LOGGER = logging.getLogger("dvd_rental.http")
ADMIN_ROLE = "ADMIN"


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _parse_bool_env(name: str, default: str) -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


_LOG_LEVEL = (os.environ.get("RENTAL_LOG_LEVEL") or "").strip().upper()
if _LOG_LEVEL:
    logging.getLogger("dvd_rental").setLevel(_LOG_LEVEL)

SWEEP_ENABLED = _parse_bool_env("RENTAL_SWEEP_ENABLED", "true")
SWEEP_INTERVAL_SECONDS = int(os.environ.get("RENTAL_SWEEP_INTERVAL_SECONDS") or DEFAULT_SWEEP_INTERVAL_SECONDS)
REMINDERS_ENABLED = _parse_bool_env("RENTAL_REMINDERS_ENABLED", "true")
REMINDER_INTERVAL_SECONDS = int(os.environ.get("RENTAL_REMINDER_INTERVAL_SECONDS") or DEFAULT_REMINDER_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    expiration_ticker = ExpirationTicker(SessionLocalRental, interval_seconds=SWEEP_INTERVAL_SECONDS) if SWEEP_ENABLED else None
    reminder_ticker = ReminderTicker(SessionLocalRental, interval_seconds=REMINDER_INTERVAL_SECONDS) if REMINDERS_ENABLED else None
    tickers = [ticker for ticker in (expiration_ticker, reminder_ticker) if ticker is not None]
    for ticker in tickers:
        ticker.start()
    app.state.expiration_ticker = expiration_ticker
    app.state.reminder_ticker = reminder_ticker
    try:
        yield
    finally:
        for ticker in tickers:
            ticker.stop()


app = FastAPI(lifespan=lifespan)

_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5001,http://localhost:5001",
)
_CORS_ALLOW_CREDENTIALS = _parse_bool_env("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(RentalLifecycleError)
async def rental_lifecycle_error_handler(request: Request, exc: RentalLifecycleError) -> JSONResponse:
    if exc.status_code >= 500:
        HTTP_LOGGER.error("Request failed path=%s code=%s detail=%s", request.url.path, exc.code, exc.message)
    else:
        HTTP_LOGGER.info("Request rejected path=%s code=%s detail=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def get_caller(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
) -> Caller:
    raw = (x_user_id or "").strip()
    if not raw:
        raise HTTPException(status_code=401, detail="Authentication required.")
    try:
        user_id = int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid user identity.") from exc
    return Caller(user_id=user_id, role=(x_user_role or "").strip().upper())


def _require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required.")


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/reservations")
def post_reservation(payload: CreateReservationDto, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    reservation = create_reservation(
        db,
        requester_id=caller.user_id,
        item_id=payload.itemID,
        rental_start=payload.rentalStart,
        rental_end=payload.rentalEnd,
        count=payload.count,
    )
    return serialize_reservation(reservation)


@app.get("/api/reservations")
def get_my_reservations(
    status: str | None = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    reservations = list_user_reservations(db, caller.user_id, parse_status_filter(status))
    return [serialize_reservation(r) for r in reservations]


@app.get("/api/reservations/all")
def get_all_reservations(
    status: str | None = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    _require_admin(caller)
    return [serialize_reservation(r) for r in list_reservations(db, parse_status_filter(status))]


@app.post("/api/reservations/{reservation_id}/accept")
def post_accept_reservation(reservation_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    _require_admin(caller)
    reservation, rental = accept_reservation(db, reservation_id, actor_id=caller.user_id)
    return {"reservation": serialize_reservation(reservation), "rental": serialize_rental(rental)}


@app.post("/api/reservations/{reservation_id}/decline")
def post_decline_reservation(
    reservation_id: int,
    payload: ReservationDecisionRequest | None = Body(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    _require_admin(caller)
    reason = payload.reason if payload else None
    reservation = decline_reservation(db, reservation_id, actor_id=caller.user_id, reason=reason)
    return serialize_reservation(reservation)


@app.post("/api/reservations/{reservation_id}/cancel")
def post_cancel_reservation(reservation_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    reservation = cancel_reservation(db, caller.user_id, reservation_id)
    return serialize_reservation(reservation)


@app.get("/api/rentals")
def get_my_rentals(
    filter: str | None = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    rentals = list_user_rentals(db, caller.user_id, parse_rental_filter(filter))
    return [serialize_rental(r) for r in rentals]


@app.get("/api/rentals/return-requests")
def get_return_requests(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    _require_admin(caller)
    return [serialize_rental(r) for r in list_return_requests(db)]


@app.post("/api/rentals/expired/process")
def post_process_expired_rentals(
    payload: SweepRequest | None = Body(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    _require_admin(caller)
    summary = sweep_expired_rentals(db, now=payload.now if payload else None)
    return summary.to_dict()


@app.post("/api/rentals/{rental_id}/return-request")
def post_return_request(rental_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    rental = request_return(db, rental_id, requester_id=caller.user_id)
    return serialize_rental(rental)


@app.post("/api/rentals/{rental_id}/return-accept")
def post_return_accept(rental_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    _require_admin(caller)
    rental = accept_return(db, rental_id, actor_id=caller.user_id)
    return serialize_rental(rental)


@app.post("/api/rentals/{rental_id}/return-decline")
def post_return_decline(rental_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    _require_admin(caller)
    rental = decline_return(db, rental_id, actor_id=caller.user_id)
    return serialize_rental(rental)


@app.get("/api/rentals/{rental_id}/transaction")
def get_rental_transaction(rental_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    rental = get_rental_for_document(db, rental_id, caller.user_id, is_admin=caller.is_admin)
    return serialize_transaction(rental)


@app.get("/api/transactions")
def get_my_transactions(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    return [serialize_transaction(r) for r in list_user_transactions(db, caller.user_id)]


@app.post("/api/items/{item_id}/reminders")
def post_item_reminder(item_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    reminder = create_reminder(db, caller.user_id, item_id)
    return {
        "reminderID": reminder.ReminderID,
        "userID": reminder.UserID,
        "itemID": reminder.ItemID,
        "createdAt": reminder.CreatedAt,
    }


@app.post("/api/reminders/run")
def run_reminders(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    _require_admin(caller)
    return process_available_reminders(db).to_dict()


@app.get("/api/notifications/pending")
def get_pending_notifications(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    _require_admin(caller)
    return [serialize_notification(n) for n in list_pending_notifications(db)]
