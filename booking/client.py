"""
HTTP client for the lesson booking API, plus the checkout and account-update
flows that sit in front of it.

The card itself is never seen here: the processor's own widget confirms the
setup intent with the client secret and hands back its result, which the
forms below turn into a success or error state.
"""

import httpx

DEFAULT_BASE_URL = "http://localhost:4242"


class LessonsAPIError(Exception):
    def __init__(self, status_code: int, code, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(message)


REQUEST_ERRORS = (LessonsAPIError, httpx.HTTPError)


class LessonsClient:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, http: httpx.Client | None = None):
        self.http = http or httpx.Client(base_url=base_url)

    def _request(self, method: str, path: str, json=None):
        response = self.http.request(method, path, json=json)

        if response.is_error:
            try:
                error = response.json().get("error", {})
            except ValueError:
                error = {}
            raise LessonsAPIError(
                response.status_code,
                error.get("code"),
                error.get("message") or response.text,
            )

        content_type = response.headers.get("content-type", "")
        if not response.content or not content_type.startswith("application/json"):
            return None
        return response.json()

    def get_config(self) -> str:
        return self._request("GET", "/config")["key"]

    def sign_up(self, email: str, name: str, first_lesson: str) -> dict:
        return self._request(
            "POST",
            "/lessons",
            json={"email": email, "name": name, "firstLesson": first_lesson},
        )

    def schedule_lesson(self, customer_id: str, amount: int, description: str) -> dict:
        body = {"customer_id": customer_id, "amount": amount, "description": description}
        return self._request("POST", "/schedule-lesson", json=body)["payment"]

    def complete_lesson_payment(self, payment_intent_id: str, amount: int | None = None) -> dict:
        body = {"payment_intent_id": payment_intent_id}
        if amount is not None:
            body["amount"] = amount
        return self._request("POST", "/complete-lesson-payment", json=body)["payment"]

    def refund_lesson(self, payment_intent_id: str, amount: int | None = None) -> str:
        body = {"payment_intent_id": payment_intent_id}
        if amount is not None:
            body["amount"] = amount
        return self._request("POST", "/refund-lesson", json=body)["refund"]

    def get_payment_method(self, customer_id: str) -> dict:
        return self._request("GET", f"/payment-method/{customer_id}")

    def update_payment_details(self, customer_id: str, payment_method_id: str) -> None:
        self._request(
            "POST",
            f"/update-payment-details/{customer_id}",
            json={"payment_method": payment_method_id},
        )

    def update_account(self, customer_id: str, email: str, name: str) -> str:
        body = {"email": email, "name": name}
        return self._request("POST", f"/account-update/{customer_id}", json=body)["clientSecret"]

    def delete_account(self, customer_id: str) -> dict:
        return self._request("POST", f"/delete-account/{customer_id}")

    def lesson_totals(self) -> dict:
        return self._request("GET", "/calculate-lesson-total")

    def customers_with_failed_payments(self) -> list:
        return self._request("GET", "/find-customers-with-failed-payments")


def setup_result(result: dict):
    """Split a processor confirmSetup result into (setup_intent, error_message)."""
    error = result.get("error")
    if error:
        return None, error.get("message")
    return result.get("setupIntent"), None


def card_last4(setup_intent: dict):
    payment_method = setup_intent.get("payment_method") or {}
    if isinstance(payment_method, str):
        return None
    return (payment_method.get("card") or {}).get("last4")


class RegistrationForm:
    """Lesson signup: name and email first, then card setup for new customers."""

    def __init__(self, client: LessonsClient):
        self.client = client
        self.learner_name = ""
        self.learner_email = ""
        self.processing = False
        self.error = None
        self.existing_customer = None
        self.customer_id = None
        self.client_secret = None
        self.payment_succeeded = False
        self.last4 = None

    @property
    def can_checkout(self) -> bool:
        return bool(self.learner_name and self.learner_email) and not self.processing

    def checkout(self, lesson_title: str) -> None:
        self.processing = True
        self.existing_customer = None
        self.error = None

        try:
            result = self.client.sign_up(self.learner_email, self.learner_name, lesson_title)
            customer = result["customer"]

            if result["isExistingCustomer"]:
                # Existing customers are sent to the account update page instead
                self.existing_customer = {
                    "customerId": customer["id"],
                    "customerEmail": customer["email"],
                }
                return

            self.customer_id = customer["id"]
            self.client_secret = result["clientSecret"]
        except REQUEST_ERRORS as exc:
            self.error = str(exc)
        finally:
            self.processing = False

    @property
    def account_update_path(self):
        if self.existing_customer is None:
            return None
        return f"/account-update/{self.existing_customer['customerId']}"

    def confirm_setup(self, result: dict) -> None:
        self.error = None
        self.last4 = None
        self.payment_succeeded = False

        setup_intent, error = setup_result(result)
        if error:
            self.error = error
            return

        if setup_intent and setup_intent.get("status") == "succeeded":
            self.last4 = card_last4(setup_intent)
            self.payment_succeeded = True


class AccountUpdateForm:
    """Account page: shows the card on file, updates name/email and replaces the card."""

    def __init__(self, client: LessonsClient, customer_id: str):
        self.client = client
        self.customer_id = customer_id
        self.billing_email = None
        self.billing_name = None
        self.card_last4 = None
        self.card_exp_month = None
        self.card_exp_year = None
        self.client_secret = None
        self.processing = False
        self.error = None

    def load(self) -> None:
        self.error = None
        try:
            payment_method = self.client.get_payment_method(self.customer_id)
        except REQUEST_ERRORS as exc:
            self.error = str(exc)
            return

        billing = payment_method.get("billing_details") or {}
        customer = payment_method.get("customer")
        card = payment_method.get("card") or {}

        if isinstance(customer, dict):
            self.billing_email = customer.get("email") or billing.get("email")
            self.billing_name = customer.get("name") or billing.get("name")
        else:
            self.billing_email = billing.get("email")
            self.billing_name = billing.get("name")

        self.card_last4 = card.get("last4")
        self.card_exp_month = card.get("exp_month")
        self.card_exp_year = card.get("exp_year")

    def submit(self, email: str | None = None, name: str | None = None) -> None:
        self.processing = True
        self.error = None

        try:
            self.client_secret = self.client.update_account(
                self.customer_id,
                email or self.billing_email,
                name or self.billing_name,
            )
        except REQUEST_ERRORS as exc:
            self.error = str(exc)
        finally:
            self.processing = False

    def confirm_setup(self, result: dict) -> None:
        self.error = None

        setup_intent, error = setup_result(result)
        if error:
            self.error = error
            return

        if not setup_intent or setup_intent.get("status") != "succeeded":
            return

        payment_method = setup_intent["payment_method"]
        payment_method_id = payment_method if isinstance(payment_method, str) else payment_method["id"]

        self.processing = True
        try:
            self.client.update_payment_details(self.customer_id, payment_method_id)
        except REQUEST_ERRORS as exc:
            self.error = str(exc)
            return
        finally:
            self.processing = False

        self.card_last4 = card_last4(setup_intent)
