import stripe
import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class LessonsError(Exception):
    """Rejection raised by the service itself, reported as {error: {code, message}}."""

    def __init__(self, code: str, message: str, status_code: int = 400):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NoPaymentMethodError(LessonsError):
    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(
            "no_payment_method", f"no payment methods found for {customer_id}"
        )


class EmailExistsError(LessonsError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("email_already_exists", "Customer email already exists!")


def error_body(code, message) -> dict:
    return {"error": {"code": code, "message": message}}


async def lessons_error_handler(request: Request, exc: LessonsError):
    logger.warning("request_rejected", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))


async def stripe_error_handler(request: Request, exc: stripe.StripeError):
    logger.warning(
        "stripe_request_failed",
        path=request.url.path,
        code=exc.code,
        http_status=exc.http_status,
    )
    content = error_body(exc.code, exc.user_message or str(exc))

    # A card decline on confirm still leaves a payment intent behind
    intent = exc.error.to_dict().get("payment_intent") if exc.error else None
    if intent:
        content["payment_intent_id"] = intent["id"] if isinstance(intent, dict) else intent

    return JSONResponse(status_code=400, content=content)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    )
    return JSONResponse(status_code=400, content=error_body("invalid_request", message))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": {"message": str(exc)}})
