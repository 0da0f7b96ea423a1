"""Reconciliation reports over recently listed charges and payment intents."""

import time

from booking.config import LESSON_PAYMENT_TYPE

REPORT_WINDOW_SECONDS = 36 * 60 * 60


def window_start(now: float | None = None) -> int:
    """Unix timestamp at the start of the trailing report window."""
    if now is None:
        now = time.time()
    return int(now - REPORT_WINDOW_SECONDS)


def is_settled_lesson_charge(charge) -> bool:
    metadata = charge.get("metadata") or {}
    return (
        charge.get("status") == "succeeded"
        and metadata.get("type") == LESSON_PAYMENT_TYPE
        and bool(charge.get("balance_transaction"))
    )


def lesson_totals(charges) -> dict:
    totals = {"payment_total": 0, "fee_total": 0, "net_total": 0}

    for charge in charges:
        if not is_settled_lesson_charge(charge):
            continue
        txn = charge["balance_transaction"]
        totals["payment_total"] += txn["amount"]
        totals["fee_total"] += txn["fee"]
        totals["net_total"] += txn["net"]

    return totals


def is_stuck(intent) -> bool:
    return (
        intent.get("status") == "requires_payment_method"
        and bool(intent.get("customer"))
        and bool(intent.get("last_payment_error"))
    )


def stuck_customers(payment_intents) -> list:
    """Customers whose latest attempt was declined and who have not re-supplied a card.

    Listing order is kept as given.
    """
    results = []

    for intent in payment_intents:
        if not is_stuck(intent):
            continue

        customer = intent["customer"]
        if isinstance(customer, str):
            customer = {"id": customer}
        error = intent["last_payment_error"]
        card = (error.get("payment_method") or {}).get("card") or {}

        results.append({
            "customer": {
                "id": customer["id"],
                "email": customer.get("email"),
                "name": customer.get("name"),
            },
            "payment_intent": {
                "created": intent.get("created"),
                "description": intent.get("description"),
                "status": "failed",
                "error": error.get("decline_code"),
            },
            "payment_method": {
                "last4": card.get("last4"),
                "brand": card.get("brand"),
            },
        })

    return results
