import stripe
import structlog

from booking.config import CURRENCY, LESSON_PAYMENT_TYPE, STRIPE_SECRET_KEY

stripe.api_key = STRIPE_SECRET_KEY

logger = structlog.get_logger(__name__)

PAGE_SIZE = 100


# Only plain dicts leave this module
def as_dict(obj) -> dict:
    return obj.to_dict()


def as_dicts(listing) -> list:
    return [obj.to_dict() for obj in listing.data]


def find_customers_by_email(email: str):
    return as_dicts(stripe.Customer.list(email=email))


def create_customer(name: str, email: str, first_lesson: str):
    customer = stripe.Customer.create(
        name=name,
        email=email,
        metadata={"first_lesson": first_lesson},
    )
    logger.info("customer_created", customer_id=customer.id)
    return as_dict(customer)


def retrieve_customer(customer_id: str):
    return as_dict(stripe.Customer.retrieve(customer_id))


def update_customer(customer_id: str, email: str, name: str):
    customer = stripe.Customer.modify(customer_id, email=email, name=name)
    logger.info("customer_updated", customer_id=customer_id)
    return as_dict(customer)


def delete_customer(customer_id: str):
    deleted = stripe.Customer.delete(customer_id)
    logger.info("customer_deleted", customer_id=customer_id)
    return as_dict(deleted)


def create_setup_intent(customer_id: str):
    return as_dict(stripe.SetupIntent.create(customer=customer_id))


def list_payment_methods(customer_id: str):
    return as_dicts(stripe.Customer.list_payment_methods(customer_id))


def list_card_payment_methods(customer_id: str):
    return as_dicts(stripe.PaymentMethod.list(
        customer=customer_id,
        type="card",
        expand=["data.customer"],
    ))


def detach_payment_method(payment_method_id: str):
    detached = stripe.PaymentMethod.detach(payment_method_id)
    logger.info("payment_method_detached", payment_method_id=payment_method_id)
    return as_dict(detached)


def authorize_payment(customer_id: str, payment_method_id: str, amount: int, description: str):
    intent = stripe.PaymentIntent.create(
        customer=customer_id,
        amount=amount,
        description=description,
        currency=CURRENCY,
        confirm=True,
        capture_method="manual",
        automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
        metadata={"type": LESSON_PAYMENT_TYPE},
        payment_method=payment_method_id,
    )
    logger.info("payment_authorized", payment_intent_id=intent.id, status=intent.status)
    return as_dict(intent)


def capture_payment(payment_intent_id: str, amount: int | None = None):
    if amount:
        intent = stripe.PaymentIntent.capture(payment_intent_id, amount_to_capture=amount)
    else:
        intent = stripe.PaymentIntent.capture(payment_intent_id)
    return as_dict(intent)


def refund_payment(payment_intent_id: str, amount: int | None = None):
    params = {"payment_intent": payment_intent_id, "reason": "requested_by_customer"}
    if amount:
        params["amount"] = amount
    refund = stripe.Refund.create(**params)
    logger.info("payment_refunded", payment_intent_id=payment_intent_id, refund_id=refund.id)
    return as_dict(refund)


def list_customer_payment_intents(customer_id: str):
    return as_dicts(stripe.PaymentIntent.list(customer=customer_id, limit=PAGE_SIZE))


def list_recent_charges(since: int):
    return as_dicts(stripe.Charge.list(
        created={"gte": since},
        limit=PAGE_SIZE,
        expand=["data.balance_transaction"],
    ))


def list_recent_payment_intents(since: int):
    return as_dicts(stripe.PaymentIntent.list(
        created={"gte": since},
        limit=PAGE_SIZE,
        expand=["data.customer"],
    ))
