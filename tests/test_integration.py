import itertools

import pytest
import stripe
from fastapi.testclient import TestClient

from booking.main import app as fastapi_app


class FakeProcessor:
    """Just enough of Stripe's customer, setup intent and payment intent APIs."""

    def __init__(self):
        self.customers = {}
        self.payment_methods = {}
        self.payment_intents = {}
        self.ids = itertools.count(1)

    def next_id(self, prefix):
        return f"{prefix}_{next(self.ids)}"

    def obj(self, values):
        return stripe.StripeObject.construct_from(values, "sk_test")

    def listing(self, data):
        return stripe.ListObject.construct_from({"object": "list", "data": data}, "sk_test")

    def list_customers(self, email=None, **params):
        return self.listing([c for c in self.customers.values() if c["email"] == email])

    def create_customer(self, name, email, metadata):
        customer = {"id": self.next_id("cus"), "object": "customer", "name": name,
                    "email": email, "metadata": metadata}
        self.customers[customer["id"]] = customer
        return self.obj(customer)

    def retrieve_customer(self, customer_id):
        return self.obj(self.customers[customer_id])

    def modify_customer(self, customer_id, **params):
        self.customers[customer_id].update(params)
        return self.obj(self.customers[customer_id])

    def delete_customer(self, customer_id):
        del self.customers[customer_id]
        return self.obj({"id": customer_id, "deleted": True})

    def create_setup_intent(self, customer):
        seti = self.next_id("seti")
        return self.obj({"id": seti, "customer": customer, "client_secret": f"{seti}_secret"})

    def attach_card(self, customer_id, last4="4242"):
        pm = {"id": self.next_id("pm"), "customer": customer_id, "card": {"last4": last4}}
        self.payment_methods[pm["id"]] = pm
        return pm["id"]

    def list_payment_methods(self, customer_id, **params):
        return self.listing(
            [pm for pm in self.payment_methods.values() if pm["customer"] == customer_id]
        )

    def detach(self, payment_method_id):
        self.payment_methods[payment_method_id]["customer"] = None
        return self.obj(self.payment_methods[payment_method_id])

    def create_payment_intent(self, customer, amount, payment_method, **params):
        pi = {"id": self.next_id("pi"), "customer": customer, "amount": amount,
              "payment_method": payment_method, "status": "requires_capture"}
        self.payment_intents[pi["id"]] = pi
        return self.obj(pi)

    def capture(self, payment_intent_id, **params):
        self.payment_intents[payment_intent_id]["status"] = "succeeded"
        return self.obj(self.payment_intents[payment_intent_id])

    def list_payment_intents(self, customer=None, **params):
        return self.listing(
            [pi for pi in self.payment_intents.values() if pi["customer"] == customer]
        )


@pytest.fixture
def processor(mocker):
    fake = FakeProcessor()
    mocker.patch("stripe.Customer.list", side_effect=fake.list_customers)
    mocker.patch("stripe.Customer.create", side_effect=fake.create_customer)
    mocker.patch("stripe.Customer.retrieve", side_effect=fake.retrieve_customer)
    mocker.patch("stripe.Customer.modify", side_effect=fake.modify_customer)
    mocker.patch("stripe.Customer.delete", side_effect=fake.delete_customer)
    mocker.patch("stripe.Customer.list_payment_methods", side_effect=fake.list_payment_methods)
    mocker.patch("stripe.SetupIntent.create", side_effect=fake.create_setup_intent)
    mocker.patch("stripe.PaymentMethod.detach", side_effect=fake.detach)
    mocker.patch("stripe.PaymentIntent.create", side_effect=fake.create_payment_intent)
    mocker.patch("stripe.PaymentIntent.capture", side_effect=fake.capture)
    mocker.patch("stripe.PaymentIntent.list", side_effect=fake.list_payment_intents)
    return fake


@pytest.fixture
def client():
    with TestClient(fastapi_app) as c:
        yield c


def sign_up(client, email="a@x.com", name="Ada"):
    return client.post("/lessons", json={"email": email, "name": name, "firstLesson": "intro"})


def test_signup_replay_returns_existing_customer(client, processor):
    first = sign_up(client)

    assert first.status_code == 201
    assert first.json()["isExistingCustomer"] is False
    assert first.json()["clientSecret"].endswith("_secret")
    customer_id = first.json()["customer"]["id"]
    assert processor.customers[customer_id]["metadata"] == {"first_lesson": "intro"}

    replay = sign_up(client)

    assert replay.json()["isExistingCustomer"] is True
    assert replay.json()["customer"]["id"] == customer_id
    assert len(processor.customers) == 1


def test_schedule_lesson_without_payment_method(client, processor):
    customer_id = sign_up(client).json()["customer"]["id"]

    response = client.post(
        "/schedule-lesson",
        json={"customer_id": customer_id, "amount": 123, "description": "Lesson"},
    )

    assert response.status_code == 400
    assert f"no payment methods found for {customer_id}" == response.json()["error"]["message"]


def test_authorize_sends_manual_capture_request(client, processor):
    customer_id = sign_up(client).json()["customer"]["id"]
    pm_id = processor.attach_card(customer_id)

    response = client.post(
        "/schedule-lesson",
        json={"customer_id": customer_id, "amount": 123, "description": "Lesson"},
    )

    assert response.status_code == 201
    kwargs = stripe.PaymentIntent.create.call_args.kwargs
    assert kwargs["payment_method"] == pm_id
    assert kwargs["capture_method"] == "manual"
    assert kwargs["confirm"] is True
    assert kwargs["currency"] == "usd"
    assert kwargs["automatic_payment_methods"] == {"enabled": True, "allow_redirects": "never"}
    assert kwargs["metadata"] == {"type": "lessons-payment"}


def test_delete_guard_then_delete_after_capture(client, processor):
    customer_id = sign_up(client).json()["customer"]["id"]
    processor.attach_card(customer_id)

    payment = client.post(
        "/schedule-lesson",
        json={"customer_id": customer_id, "amount": 123, "description": "Lesson"},
    ).json()["payment"]

    blocked = client.post(f"/delete-account/{customer_id}")

    assert blocked.status_code == 200
    assert blocked.json() == {"uncaptured_payments": [payment["id"]]}
    assert customer_id in processor.customers

    captured = client.post(
        "/complete-lesson-payment",
        json={"payment_intent_id": payment["id"], "amount": 123},
    )
    assert captured.json()["payment"]["status"] == "succeeded"
    stripe.PaymentIntent.capture.assert_called_once_with(payment["id"], amount_to_capture=123)

    deleted = client.post(f"/delete-account/{customer_id}")

    assert deleted.json() == {"deleted": True}
    assert customer_id not in processor.customers


def test_account_update_email_uniqueness(client, processor):
    ada = sign_up(client, "a@x.com", "Ada").json()["customer"]["id"]
    sign_up(client, "b@x.com", "Bob")

    taken = client.post(f"/account-update/{ada}", json={"email": "b@x.com", "name": "Ada"})
    assert taken.status_code == 400
    assert taken.json()["error"]["message"] == "Customer email already exists!"

    own = client.post(f"/account-update/{ada}", json={"email": "a@x.com", "name": "Ada"})
    assert own.status_code == 200
    stripe.Customer.modify.assert_not_called()

    fresh = client.post(f"/account-update/{ada}", json={"email": "ada@x.com", "name": "Ada"})
    assert fresh.status_code == 200
    assert fresh.json()["clientSecret"].endswith("_secret")
    assert processor.customers[ada]["email"] == "ada@x.com"


def test_replace_card_detaches_old_payment_methods(client, processor):
    customer_id = sign_up(client).json()["customer"]["id"]
    old = processor.attach_card(customer_id, "4242")
    new = processor.attach_card(customer_id, "0005")

    response = client.post(f"/update-payment-details/{customer_id}", json={"payment_method": new})

    assert response.status_code == 200
    assert processor.payment_methods[old]["customer"] is None
    assert processor.payment_methods[new]["customer"] == customer_id


def test_refund_lesson_sets_reason(client, mocker):
    create = mocker.patch(
        "stripe.Refund.create",
        return_value=stripe.StripeObject.construct_from({"id": "re_1"}, "sk_test"),
    )

    response = client.post("/refund-lesson", json={"payment_intent_id": "pi_1"})

    assert response.status_code == 201
    assert response.json() == {"refund": "re_1"}
    create.assert_called_once_with(payment_intent="pi_1", reason="requested_by_customer")


def test_calculate_lesson_total_queries_trailing_window(client, mocker):
    clock = mocker.patch("booking.reports.time")
    clock.time.return_value = 1_700_000_000
    charge_list = mocker.patch(
        "stripe.Charge.list",
        return_value=stripe.ListObject.construct_from({"object": "list", "data": []}, "sk_test"),
    )

    response = client.get("/calculate-lesson-total")

    assert response.json() == {"payment_total": 0, "fee_total": 0, "net_total": 0}
    charge_list.assert_called_once_with(
        created={"gte": 1_700_000_000 - 36 * 60 * 60},
        limit=100,
        expand=["data.balance_transaction"],
    )


def test_signup_returns_plain_customer_record(client, processor):
    response = sign_up(client)

    body = response.json()
    customer_id = body["customer"]["id"]
    assert body == {
        "clientSecret": body["clientSecret"],
        "isExistingCustomer": False,
        "customer": {
            "id": customer_id,
            "object": "customer",
            "name": "Ada",
            "email": "a@x.com",
            "metadata": {"first_lesson": "intro"},
        },
    }
    assert "_requestor" not in response.text
    assert "api_key" not in response.text
    assert "sk_test" not in response.text


def test_schedule_lesson_returns_plain_payment(client, processor):
    customer_id = sign_up(client).json()["customer"]["id"]
    pm_id = processor.attach_card(customer_id)

    response = client.post(
        "/schedule-lesson",
        json={"customer_id": customer_id, "amount": 123, "description": "Lesson"},
    )

    payment = response.json()["payment"]
    assert payment == {
        "id": payment["id"],
        "customer": customer_id,
        "amount": 123,
        "payment_method": pm_id,
        "status": "requires_capture",
    }
    assert "_requestor" not in response.text


def test_reports_over_processor_listings(client, mocker):
    charges = stripe.ListObject.construct_from({
        "object": "list",
        "data": [
            {
                "id": "ch_1",
                "object": "charge",
                "status": "succeeded",
                "metadata": {"type": "lessons-payment"},
                "balance_transaction": {"amount": 4500, "fee": 161, "net": 4339},
            },
            {
                "id": "ch_2",
                "object": "charge",
                "status": "succeeded",
                "metadata": {"type": "concert-tickets"},
                "balance_transaction": {"amount": 9900, "fee": 317, "net": 9583},
            },
        ],
    }, "sk_test")
    intents = stripe.ListObject.construct_from({
        "object": "list",
        "data": [{
            "id": "pi_failed",
            "object": "payment_intent",
            "status": "requires_payment_method",
            "created": 1700000000,
            "description": "Lesson",
            "customer": {"id": "cus_1", "object": "customer", "email": "a@x.com", "name": "Ada"},
            "last_payment_error": {
                "decline_code": "generic_decline",
                "payment_method": {"card": {"last4": "0002", "brand": "visa"}},
            },
        }],
    }, "sk_test")
    mocker.patch("stripe.Charge.list", return_value=charges)
    mocker.patch("stripe.PaymentIntent.list", return_value=intents)

    totals = client.get("/calculate-lesson-total")
    failed = client.get("/find-customers-with-failed-payments")

    assert totals.json() == {"payment_total": 4500, "fee_total": 161, "net_total": 4339}
    assert failed.json() == [{
        "customer": {"id": "cus_1", "email": "a@x.com", "name": "Ada"},
        "payment_intent": {
            "created": 1700000000,
            "description": "Lesson",
            "status": "failed",
            "error": "generic_decline",
        },
        "payment_method": {"last4": "0002", "brand": "visa"},
    }]
