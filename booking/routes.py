import asyncio

import structlog
from fastapi import APIRouter, Response
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from booking.config import payment_method_selection, publishable_key
from booking.errors import EmailExistsError, NoPaymentMethodError
from booking.reports import lesson_totals, stuck_customers, window_start
from booking.stripe_service import (
    authorize_payment,
    capture_payment,
    create_customer,
    create_setup_intent,
    delete_customer,
    detach_payment_method,
    find_customers_by_email,
    list_card_payment_methods,
    list_customer_payment_intents,
    list_payment_methods,
    list_recent_charges,
    list_recent_payment_intents,
    refund_payment,
    retrieve_customer,
    update_customer,
)

router = APIRouter()

logger = structlog.get_logger(__name__)


class LessonSignupRequest(BaseModel):
    email: str
    name: str
    firstLesson: str


class ScheduleLessonRequest(BaseModel):
    customer_id: str
    amount: int = Field(gt=0)
    description: str


class LessonPaymentRequest(BaseModel):
    payment_intent_id: str
    amount: int | None = Field(default=None, gt=0)


class PaymentDetailsRequest(BaseModel):
    payment_method: str


class AccountUpdateRequest(BaseModel):
    email: str
    name: str


def select_payment_method(payment_methods):
    if not payment_methods:
        return None
    if payment_method_selection() == "first":
        return payment_methods[0]
    return payment_methods[-1]


@router.get("/config")
def get_config():
    return {"key": publishable_key()}


@router.post("/lessons", status_code=201)
def sign_up_for_lessons(request: LessonSignupRequest):
    matches = find_customers_by_email(request.email)

    if matches:
        customer = matches[0]
        logger.info("existing_customer_signup", customer_id=customer["id"])
    else:
        customer = create_customer(request.name, request.email, request.firstLesson)

    setup_intent = create_setup_intent(customer["id"])

    return {
        "clientSecret": setup_intent["client_secret"],
        "isExistingCustomer": bool(matches),
        "customer": customer,
    }


@router.post("/schedule-lesson", status_code=201)
def schedule_lesson(request: ScheduleLessonRequest):
    payment_method = select_payment_method(list_payment_methods(request.customer_id))
    if payment_method is None:
        raise NoPaymentMethodError(request.customer_id)

    intent = authorize_payment(
        request.customer_id,
        payment_method["id"],
        request.amount,
        request.description,
    )
    return {"payment": intent}


@router.post("/complete-lesson-payment")
def complete_lesson_payment(request: LessonPaymentRequest):
    intent = capture_payment(request.payment_intent_id, request.amount)
    return {"payment": intent}


@router.post("/refund-lesson", status_code=201)
def refund_lesson(request: LessonPaymentRequest):
    refund = refund_payment(request.payment_intent_id, request.amount)
    return {"refund": refund["id"]}


@router.get("/payment-method/{customer_id}")
def get_payment_method(customer_id: str):
    payment_method = select_payment_method(list_card_payment_methods(customer_id))
    if payment_method is None:
        raise NoPaymentMethodError(customer_id)
    return payment_method


@router.post("/update-payment-details/{customer_id}")
async def update_payment_details(customer_id: str, request: PaymentDetailsRequest):
    payment_methods = await run_in_threadpool(list_payment_methods, customer_id)
    stale = [pm["id"] for pm in payment_methods if pm["id"] != request.payment_method]

    # Attaching the new card happens client-side; only the old ones are removed here
    await asyncio.gather(
        *(run_in_threadpool(detach_payment_method, pm_id) for pm_id in stale)
    )

    return Response(status_code=200)


@router.post("/account-update/{customer_id}")
def account_update(customer_id: str, request: AccountUpdateRequest):
    holders = find_customers_by_email(request.email)
    if any(holder["id"] != customer_id for holder in holders):
        raise EmailExistsError(request.email)

    customer = retrieve_customer(customer_id)
    if customer.get("email") != request.email or customer.get("name") != request.name:
        update_customer(customer_id, request.email, request.name)

    setup_intent = create_setup_intent(customer_id)
    return {"clientSecret": setup_intent["client_secret"]}


@router.post("/delete-account/{customer_id}")
def delete_account(customer_id: str):
    uncaptured = [
        intent["id"]
        for intent in list_customer_payment_intents(customer_id)
        if intent["status"] == "requires_capture"
    ]

    if uncaptured:
        logger.info("delete_blocked", customer_id=customer_id, uncaptured=uncaptured)
        return {"uncaptured_payments": uncaptured}

    delete_customer(customer_id)
    return {"deleted": True}


@router.get("/calculate-lesson-total")
def calculate_lesson_total():
    return lesson_totals(list_recent_charges(window_start()))


@router.get("/find-customers-with-failed-payments")
def find_customers_with_failed_payments():
    return stuck_customers(list_recent_payment_intents(window_start()))
