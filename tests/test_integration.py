"""
Integration Tests for Donation Ledger
Tests the full HTTP flow from initiation to provider confirmation
against an in-memory database, with provider APIs mocked at the transport
"""
import os
import sys
from pathlib import Path
# Add parent folder (project root) to sys.path so local modules can be imported
PROJECT_ROOT = Path(__file__).resolve().parents[1]
proj_root_str = str(PROJECT_ROOT)
if proj_root_str not in sys.path:
    sys.path.insert(0, proj_root_str)

os.environ.setdefault("DATABASE_URL", "sqlite://")

import hashlib
import hmac
import json
import threading
import time
from decimal import Decimal
from urllib.parse import urlencode

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import MagicMock, patch

from donation_ledger.main import app
from donation_ledger.core.config import Settings
from donation_ledger.core.circuit_breaker import reset_provider_breakers
from donation_ledger.database.database import get_db
from donation_ledger.models.ledger import Base, Category, Donation, PendingDonation
from donation_ledger.providers.paysera import encode_paysera_data
from donation_ledger.providers.registry import ProviderRegistry, get_provider_registry
from donation_ledger.services.ledger import LedgerService


PAYSERA_PASSWORD = "sign-pass"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
RETURN_URLS = {"success_url": "https://example.org/thanks", "cancel_url": "https://example.org/cancel"}


class FakePayPal:
    """Minimal PayPal REST and IPN endpoint behind an httpx MockTransport"""

    def __init__(self):
        self.orders = {}
        self.ipn_answer = "VERIFIED"
        self.rejected_amounts = set()
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-token"})
        if path == "/v2/checkout/orders":
            unit = json.loads(request.content)["purchase_units"][0]
            if unit["amount"]["value"] in self.rejected_amounts:
                return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY", "message": "Invalid amount"})
            order_id = f"PAYPAL-ORDER-{len(self.orders) + 1}"
            self.orders[order_id] = unit["custom_id"]
            return httpx.Response(201, json={
                "id": order_id,
                "status": "CREATED",
                "links": [{"rel": "approve", "href": f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}"}]
            })
        if path.startswith("/v2/checkout/orders/") and path.endswith("/capture"):
            order_id = path.split("/")[4]
            return httpx.Response(201, json={
                "id": order_id,
                "status": "COMPLETED",
                "purchase_units": [{"payments": {"captures": [{"id": "CAPTURE-1", "custom_id": self.orders[order_id]}]}}]
            })
        if path == "/v1/identity/generate-token":
            return httpx.Response(200, json={"client_token": "eyJ0b2tlbiI"})
        if path == "/cgi-bin/webscr":
            return httpx.Response(200, text=self.ipn_answer)
        return httpx.Response(404, json={"message": "not found"})


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite://",
        public_base_url="https://donations.example.org",
        paypal_client_id="paypal-client",
        paypal_client_secret="paypal-secret",
        paypal_receiver_email="donations@example.org",
        paysera_project_id="12345",
        paysera_sign_password=PAYSERA_PASSWORD,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def paysera_callback(order_ref: str, status: str = "1", amount: int = 2000, password: str = PAYSERA_PASSWORD) -> dict:
    data = encode_paysera_data({
        "projectid": "12345",
        "orderid": order_ref,
        "amount": str(amount),
        "currency": "EUR",
        "status": status,
    })
    return {"data": data, "ss1": hashlib.md5((data + password).encode()).hexdigest()}


def ipn_body(order_ref: str, mc_gross: str = "30.00", receiver_email: str = "donations@example.org") -> str:
    return urlencode({
        "payment_status": "Completed",
        "mc_gross": mc_gross,
        "mc_currency": "EUR",
        "custom": order_ref,
        "receiver_email": receiver_email,
    })


def stripe_webhook(order_ref: str, secret: str = STRIPE_WEBHOOK_SECRET, amount_total: int = 1500):
    payload = json.dumps({
        "id": "evt_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "object": "checkout.session",
            "client_reference_id": order_ref,
            "payment_status": "paid",
            "amount_total": amount_total,
            "currency": "eur",
        }}
    }).encode()
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return payload, f"t={timestamp},v1={digest}"


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Session for seeding and inspecting the ledger from the test"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_paypal():
    return FakePayPal()


@pytest.fixture
def registry(fake_paypal):
    return ProviderRegistry(make_settings(), transport=fake_paypal.transport)


@pytest_asyncio.fixture
async def client(session_factory, registry):
    """Test client with the ledger on the in-memory database"""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    reset_provider_breakers()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_registry] = lambda: registry

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    reset_provider_breakers()


@pytest.fixture
def category(db_session):
    category = Category(
        id="general",
        name="General fund",
        description="Where it is needed most",
        target_amount=Decimal("1000.00"),
        current_amount=Decimal("0.00"),
        sort_order=1,
        has_progress_bar=True,
    )
    db_session.add(category)
    db_session.commit()
    return category


def ledger_total(db_session, category_id: str = "general") -> Decimal:
    db_session.expire_all()
    return Decimal(str(db_session.get(Category, category_id).current_amount))


async def initiate_paysera(client, **overrides) -> dict:
    payload = {
        "category_id": "general",
        "donor_name": "Alice",
        "email": "alice@example.com",
        "amount": "20.00",
        "is_anonymous": False,
        **RETURN_URLS,
    }
    payload.update(overrides)
    response = await client.post("/payments/paysera/initiate", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


# ============================================================================
# PAYSERA FLOW TESTS
# ============================================================================

class TestPayseraFlow:
    """Test initiation and callback reconciliation through Paysera"""

    @pytest.mark.asyncio
    async def test_initiate_and_confirm(self, client, db_session, category):
        """Test a signed callback turns the pending donation into a donation"""
        initiated = await initiate_paysera(client)

        assert initiated["provider"] == "paysera"
        assert initiated["redirect_url"].startswith("https://www.paysera.com/pay/?data=")
        assert db_session.get(PendingDonation, initiated["order_ref"]) is not None

        response = await client.get("/payments/paysera/callback", params=paysera_callback(initiated["order_ref"]))

        assert response.status_code == 200
        assert response.text == "OK"

        db_session.expire_all()
        donations = db_session.query(Donation).all()
        assert len(donations) == 1
        assert donations[0].donor_name == "Alice"
        assert donations[0].order_ref == initiated["order_ref"]
        assert donations[0].provider == "paysera"
        assert db_session.get(PendingDonation, initiated["order_ref"]) is None
        assert ledger_total(db_session) == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_duplicate_callback_credits_once(self, client, db_session, category):
        """Test replayed callbacks are acknowledged without crediting again"""
        initiated = await initiate_paysera(client)
        params = paysera_callback(initiated["order_ref"])

        first = await client.get("/payments/paysera/callback", params=params)
        second = await client.get("/payments/paysera/callback", params=params)

        assert first.text == "OK"
        assert second.text == "OK"
        db_session.expire_all()
        assert db_session.query(Donation).count() == 1
        assert ledger_total(db_session) == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_tampered_signature(self, client, db_session, category):
        """Test a forged callback is acknowledged but changes nothing"""
        initiated = await initiate_paysera(client)
        params = paysera_callback(initiated["order_ref"], password="guessed")

        response = await client.get("/payments/paysera/callback", params=params)

        assert response.status_code == 200
        assert response.text == "OK"
        db_session.expire_all()
        assert db_session.query(Donation).count() == 0
        assert db_session.get(PendingDonation, initiated["order_ref"]) is not None
        assert ledger_total(db_session) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_unknown_order_ref(self, client, db_session, category):
        """Test callbacks for orders never initiated are a no-op"""
        response = await client.get("/payments/paysera/callback", params=paysera_callback("never-initiated"))

        assert response.text == "OK"
        assert db_session.query(Donation).count() == 0
        assert ledger_total(db_session) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_not_completed_status(self, client, db_session, category):
        """Test non-completed statuses keep the donation pending"""
        initiated = await initiate_paysera(client)

        response = await client.get("/payments/paysera/callback", params=paysera_callback(initiated["order_ref"], status="0"))

        assert response.text == "OK"
        db_session.expire_all()
        assert db_session.get(PendingDonation, initiated["order_ref"]) is not None
        assert db_session.query(Donation).count() == 0

    @pytest.mark.asyncio
    async def test_underpaid_callback(self, client, db_session, category):
        """Test a callback reporting less than the donation amount credits nothing"""
        initiated = await initiate_paysera(client)

        response = await client.get("/payments/paysera/callback", params=paysera_callback(initiated["order_ref"], amount=1))

        assert response.text == "OK"
        db_session.expire_all()
        assert db_session.query(Donation).count() == 0
        assert db_session.get(PendingDonation, initiated["order_ref"]) is not None
        assert ledger_total(db_session) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_garbage_callback(self, client, db_session, category):
        """Test callbacks without data are acknowledged"""
        response = await client.get("/payments/paysera/callback", params={"data": "???", "ss1": "abc"})

        assert response.status_code == 200
        assert response.text == "OK"
        assert db_session.query(Donation).count() == 0

    @pytest.mark.asyncio
    async def test_confirmations_in_any_order(self, client, db_session, category):
        """Test the category total is the sum of confirmed amounts whatever the arrival order"""
        refs = [
            (await initiate_paysera(client, amount=amount))["order_ref"]
            for amount in ("5.00", "12.50", "7.25")
        ]

        for order_ref, cents in reversed(list(zip(refs, (500, 1250, 725)))):
            await client.get("/payments/paysera/callback", params=paysera_callback(order_ref, amount=cents))

        db_session.expire_all()
        assert db_session.query(Donation).count() == 3
        assert ledger_total(db_session) == Decimal("24.75")
        assert db_session.query(PendingDonation).count() == 0

    @pytest.mark.asyncio
    async def test_anonymous_donation(self, client, db_session, category):
        """Test the real name of an anonymous donor is never stored"""
        initiated = await initiate_paysera(client, donor_name="Bob", is_anonymous=True)

        pending = db_session.get(PendingDonation, initiated["order_ref"])
        assert pending.donor_name == "Anonymous"

        await client.get("/payments/paysera/callback", params=paysera_callback(initiated["order_ref"]))

        db_session.expire_all()
        donation = db_session.query(Donation).one()
        assert donation.donor_name == "Anonymous"
        assert donation.is_anonymous is True
        assert db_session.query(Donation).filter(Donation.donor_name == "Bob").count() == 0


# ============================================================================
# INITIATION VALIDATION TESTS
# ============================================================================

class TestInitiationValidation:
    """Test requests rejected before anything is stored"""

    @pytest.mark.asyncio
    async def test_zero_amount(self, client, db_session, category):
        """Test non-positive amounts are rejected"""
        response = await client.post("/payments/paysera/initiate", json={
            "category_id": "general", "donor_name": "Alice", "email": "alice@example.com", "amount": 0, **RETURN_URLS
        })

        assert response.status_code == 422
        assert "error" in response.json()
        assert db_session.query(PendingDonation).count() == 0

    @pytest.mark.asyncio
    async def test_missing_email_for_paysera(self, client, db_session, category):
        """Test Paysera needs an email address"""
        response = await client.post("/payments/paysera/initiate", json={
            "category_id": "general", "donor_name": "Alice", "amount": "10", **RETURN_URLS
        })

        assert response.status_code == 400
        assert "email" in response.json()["error"]
        assert db_session.query(PendingDonation).count() == 0

    @pytest.mark.asyncio
    async def test_unknown_category(self, client, db_session, category):
        """Test donations to unknown categories are rejected"""
        response = await client.post("/payments/paysera/initiate", json={
            "category_id": "missing", "donor_name": "Alice", "email": "alice@example.com", "amount": "10", **RETURN_URLS
        })

        assert response.status_code == 400
        assert "missing" in response.json()["error"]
        assert db_session.query(PendingDonation).count() == 0

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, client, category):
        """Test only known providers can be initiated"""
        response = await client.post("/payments/bitcoin/initiate", json={
            "category_id": "general", "donor_name": "Alice", "amount": "10"
        })

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, client, category):
        """Test missing credentials name the setting without leaking secrets"""
        app.dependency_overrides[get_provider_registry] = lambda: ProviderRegistry(
            make_settings(paysera_project_id="", paysera_sign_password="")
        )

        response = await client.post("/payments/paysera/initiate", json={
            "category_id": "general", "donor_name": "Alice", "email": "alice@example.com", "amount": "10", **RETURN_URLS
        })

        assert response.status_code == 500
        assert "PAYSERA_SIGN_PASSWORD" in response.json()["error"]
        assert PAYSERA_PASSWORD not in response.text


# ============================================================================
# PAYPAL FLOW TESTS
# ============================================================================

class TestPayPalFlow:
    """Test the PayPal capture and IPN channels"""

    async def _initiate(self, client) -> dict:
        response = await client.post("/payments/paypal/initiate", json={
            "category_id": "general", "donor_name": "Carol", "amount": "30.00", "support_message": "Good luck!"
        })
        assert response.status_code == 200, response.text
        return response.json()

    @pytest.mark.asyncio
    async def test_capture_confirms(self, client, db_session, category):
        """Test a completed capture records the donation"""
        initiated = await self._initiate(client)
        assert initiated["provider_order_id"] == "PAYPAL-ORDER-1"

        response = await client.post("/payments/paypal/capture", json={"provider_order_id": "PAYPAL-ORDER-1"})

        assert response.status_code == 200
        assert response.json() == {"success": True}
        db_session.expire_all()
        donation = db_session.query(Donation).one()
        assert donation.order_ref == initiated["order_ref"]
        assert donation.support_message == "Good luck!"
        assert ledger_total(db_session) == Decimal("30.00")

    @pytest.mark.asyncio
    async def test_capture_and_ipn_credit_once(self, client, db_session, category):
        """Test the capture and the IPN for the same order credit it once"""
        initiated = await self._initiate(client)
        await client.post("/payments/paypal/capture", json={"provider_order_id": initiated["provider_order_id"]})

        body = urlencode({
            "payment_status": "Completed",
            "mc_gross": "30.00",
            "mc_currency": "EUR",
            "custom": initiated["order_ref"],
            "receiver_email": "donations@example.org",
        })
        response = await client.post(
            "/payments/paypal/ipn",
            content=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )

        assert response.status_code == 200
        assert response.text == "OK"
        db_session.expire_all()
        assert db_session.query(Donation).count() == 1
        assert ledger_total(db_session) == Decimal("30.00")

    @pytest.mark.asyncio
    async def test_ipn_alone_confirms(self, client, db_session, category):
        """Test a verified IPN confirms an order that was never captured here"""
        initiated = await self._initiate(client)
        body = ipn_body(initiated["order_ref"])

        await client.post("/payments/paypal/ipn", content=body,
                          headers={"Content-Type": "application/x-www-form-urlencoded"})

        db_session.expire_all()
        assert db_session.query(Donation).count() == 1
        assert ledger_total(db_session) == Decimal("30.00")

    @pytest.mark.asyncio
    async def test_invalid_ipn(self, client, db_session, category, fake_paypal):
        """Test IPNs PayPal does not vouch for change nothing"""
        initiated = await self._initiate(client)
        fake_paypal.ipn_answer = "INVALID"
        body = ipn_body(initiated["order_ref"])

        response = await client.post("/payments/paypal/ipn", content=body,
                                     headers={"Content-Type": "application/x-www-form-urlencoded"})

        assert response.text == "OK"
        db_session.expire_all()
        assert db_session.query(Donation).count() == 0

    @pytest.mark.asyncio
    async def test_underpaid_ipn(self, client, db_session, category):
        """Test a verified IPN for a one cent payment does not credit the pledged amount"""
        initiated = await self._initiate(client)

        response = await client.post("/payments/paypal/ipn", content=ipn_body(initiated["order_ref"], mc_gross="0.01"),
                                     headers={"Content-Type": "application/x-www-form-urlencoded"})

        assert response.text == "OK"
        db_session.expire_all()
        assert db_session.query(Donation).count() == 0
        assert db_session.get(PendingDonation, initiated["order_ref"]) is not None
        assert ledger_total(db_session) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_ipn_to_other_account(self, client, db_session, category):
        """Test a verified IPN for a payment to someone else's account credits nothing"""
        initiated = await self._initiate(client)
        body = ipn_body(initiated["order_ref"], receiver_email="attacker@example.com")

        response = await client.post("/payments/paypal/ipn", content=body,
                                     headers={"Content-Type": "application/x-www-form-urlencoded"})

        assert response.text == "OK"
        db_session.expire_all()
        assert db_session.query(Donation).count() == 0
        assert db_session.get(PendingDonation, initiated["order_ref"]) is not None

    @pytest.mark.asyncio
    async def test_rejected_orders_do_not_block_donations(self, client, db_session, category, fake_paypal):
        """Test repeated order rejections leave the provider usable"""
        fake_paypal.rejected_amounts.add("0.01")

        for _ in range(6):
            response = await client.post("/payments/paypal/initiate", json={
                "category_id": "general", "donor_name": "Mallory", "amount": "0.01"
            })
            assert response.status_code == 502
            assert "Invalid amount" in response.json()["error"]

        initiated = await self._initiate(client)

        assert initiated["provider_order_id"] == "PAYPAL-ORDER-1"
        assert db_session.query(PendingDonation).count() == 1

    @pytest.mark.asyncio
    async def test_client_token(self, client):
        """Test the JS SDK client token endpoint"""
        response = await client.get("/payments/paypal/client-token")

        assert response.status_code == 200
        assert response.json() == {"client_token": "eyJ0b2tlbiI"}


# ============================================================================
# STRIPE FLOW TESTS
# ============================================================================

class TestStripeFlow:
    """Test Stripe checkout initiation and webhooks"""

    async def _initiate(self, client) -> dict:
        session = MagicMock(id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1")
        with patch("stripe.StripeClient") as client_class:
            client_class.return_value.checkout.sessions.create.return_value = session
            response = await client.post("/payments/stripe/initiate", json={
                "category_id": "general", "donor_name": "Dan", "amount": "15", **RETURN_URLS
            })
        assert response.status_code == 200, response.text
        return response.json()

    @pytest.mark.asyncio
    async def test_webhook_confirms(self, client, db_session, category):
        """Test a signed checkout.session.completed confirms the donation"""
        initiated = await self._initiate(client)
        assert initiated["redirect_url"] == "https://checkout.stripe.com/c/pay/cs_test_1"

        payload, signature = stripe_webhook(initiated["order_ref"])
        response = await client.post("/payments/stripe/webhook", content=payload,
                                     headers={"Stripe-Signature": signature, "Content-Type": "application/json"})

        assert response.status_code == 200
        assert response.json() == {"received": True}
        db_session.expire_all()
        assert db_session.query(Donation).one().provider == "stripe"
        assert ledger_total(db_session) == Decimal("15.00")

    @pytest.mark.asyncio
    async def test_webhook_bad_signature(self, client, db_session, category):
        """Test unsigned webhooks are acknowledged and ignored"""
        initiated = await self._initiate(client)

        payload, signature = stripe_webhook(initiated["order_ref"], secret="whsec_other")
        response = await client.post("/payments/stripe/webhook", content=payload,
                                     headers={"Stripe-Signature": signature, "Content-Type": "application/json"})

        assert response.status_code == 200
        assert db_session.query(Donation).count() == 0
        assert ledger_total(db_session) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_webhook_amount_mismatch(self, client, db_session, category):
        """Test a paid session for a different amount keeps the donation pending"""
        initiated = await self._initiate(client)

        payload, signature = stripe_webhook(initiated["order_ref"], amount_total=100)
        response = await client.post("/payments/stripe/webhook", content=payload,
                                     headers={"Stripe-Signature": signature, "Content-Type": "application/json"})

        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.query(Donation).count() == 0
        assert db_session.get(PendingDonation, initiated["order_ref"]) is not None


# ============================================================================
# CONCURRENT CONFIRMATION TESTS
# ============================================================================

class TestConcurrentConfirmation:
    """Test two confirmations racing for one order on a real file database"""

    @pytest.fixture
    def file_engine(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'ledger.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        # Serialize writers at BEGIN so both claims see a consistent snapshot
        @event.listens_for(engine, "connect")
        def do_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        Base.metadata.create_all(bind=engine)
        yield engine
        engine.dispose()

    def test_racing_confirmations_credit_once(self, file_engine):
        """Test only one of two simultaneous confirmations records the donation"""
        Session = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        with Session() as seed:
            seed.add(Category(id="general", name="General fund", current_amount=Decimal("0.00")))
            seed.commit()
            LedgerService.create_pending(
                seed,
                order_ref="ref-race",
                provider="paysera",
                category_id="general",
                donor_name="Alice",
                amount=Decimal("20.00"),
                currency="EUR",
                is_anonymous=False,
            )

        barrier = threading.Barrier(2)
        results, errors = [], []

        def confirm():
            with Session() as db:
                barrier.wait()
                try:
                    donation = LedgerService.confirm_pending(
                        db, provider="paysera", order_ref="ref-race",
                        paid_amount=Decimal("20.00"), paid_currency="EUR",
                    )
                    results.append(donation.id if donation else None)
                except Exception as e:
                    errors.append(e)

        threads = [threading.Thread(target=confirm) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert len(results) == 2
        assert results.count(None) == 1

        with Session() as check:
            assert check.query(Donation).count() == 1
            assert check.query(PendingDonation).count() == 0
            assert Decimal(str(check.get(Category, "general").current_amount)) == Decimal("20.00")


# ============================================================================
# READ API TESTS
# ============================================================================

class TestReadAPI:
    """Test donation listings, leaderboard and category totals"""

    @pytest_asyncio.fixture
    async def confirmed(self, client, category):
        for name, amount, message in (("Alice", "20.00", "Go team"), ("Bob", "50.00", None), ("Alice", "40.00", None)):
            initiated = await initiate_paysera(client, donor_name=name, amount=amount, support_message=message)
            cents = int(Decimal(amount) * 100)
            await client.get("/payments/paysera/callback", params=paysera_callback(initiated["order_ref"], amount=cents))

    @pytest.mark.asyncio
    async def test_list_by_amount(self, client, confirmed):
        """Test sorting by amount, largest first"""
        response = await client.get("/donations", params={"sort": "amount"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [d["amount"] for d in data["donations"]] == [50.0, 40.0, 20.0]
        assert all("email" not in d for d in data["donations"])

    @pytest.mark.asyncio
    async def test_list_invalid_sort(self, client, confirmed):
        """Test unknown sort orders are rejected"""
        response = await client.get("/donations", params={"sort": "name"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_leaderboard(self, client, confirmed):
        """Test donor totals are grouped and ordered"""
        response = await client.get("/donations/leaderboard", params={"category_id": "general"})

        assert response.status_code == 200
        donors = response.json()["donors"]
        assert donors[0]["donor_name"] == "Alice"
        assert donors[0]["total_amount"] == 60.0
        assert donors[0]["donation_count"] == 2
        assert donors[1]["donor_name"] == "Bob"

    @pytest.mark.asyncio
    async def test_support_messages(self, client, confirmed):
        """Test only donations with a message are listed"""
        response = await client.get("/donations/support-messages")

        messages = response.json()["messages"]
        assert len(messages) == 1
        assert messages[0]["support_message"] == "Go team"
        assert messages[0]["donor_name"] == "Alice"

    @pytest.mark.asyncio
    async def test_category_totals(self, client, confirmed):
        """Test categories carry their running totals"""
        response = await client.get("/categories")

        assert response.status_code == 200
        categories = response.json()["categories"]
        assert categories[0]["id"] == "general"
        assert categories[0]["current_amount"] == 110.0

    @pytest.mark.asyncio
    async def test_empty_ledger(self, client):
        """Test read endpoints on an empty ledger"""
        categories = await client.get("/categories")
        donations = await client.get("/donations")

        assert categories.json() == {"categories": [], "total": 0}
        assert donations.json() == {"donations": [], "total": 0}

    @pytest.mark.asyncio
    async def test_category_not_found(self, client):
        """Test unknown category lookups"""
        response = await client.get("/categories/missing")

        assert response.status_code == 404
        assert response.json() == {"error": "Unknown category: missing"}


# ============================================================================
# HEALTH TESTS
# ============================================================================

class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
