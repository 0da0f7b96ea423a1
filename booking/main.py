import stripe
import structlog
from fastapi import FastAPI, Request, Header
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from booking.config import static_dir, webhook_secret
from booking.errors import (
    LessonsError,
    lessons_error_handler,
    stripe_error_handler,
    unhandled_error_handler,
    validation_error_handler,
)
from booking.log import setup_logging
from booking.pages import router as pages_router
from booking.routes import router

setup_logging()

logger = structlog.get_logger(__name__)

app = FastAPI(title="Lesson Booking Service")

app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

app.add_exception_handler(LessonsError, lessons_error_handler)
app.add_exception_handler(stripe.StripeError, stripe_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

app.include_router(router)
app.include_router(pages_router)


@app.post("/webhook")
async def stripe_webhook(request: Request, stripe_signature: str = Header(None)):
    secret = webhook_secret()
    if not secret:
        raise LessonsError("not_implemented", "Webhook handling is not configured", status_code=501)

    payload = await request.body()

    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature, secret)
    except ValueError:
        raise LessonsError("invalid_payload", "Invalid payload")
    except stripe.SignatureVerificationError:
        raise LessonsError("invalid_signature", "Invalid signature")

    logger.info("webhook_received", event_id=event["id"], event_type=event["type"])
    return {"received": True}


# Assets live under /static so unknown API paths still 404
if static_dir().is_dir():
    app.mount("/static", StaticFiles(directory=static_dir()), name="static")
