"""
Pytest configuration and fixtures
"""
import os

# Settings are read at import time; pin them before the app loads
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["TOKEN_SIGNING_SECRET"] = "test-signing-secret"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["PUBLIC_ORIGIN"] = "https://repair.test"
for _name in (
    "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "RESEND_API_KEY",
    "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER",
    "GOOGLE_CALENDAR_CREDENTIALS", "GOOGLE_CALENDAR_ID",
):
    os.environ[_name] = ""

from datetime import date, datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from repair_booking.config import settings
from repair_booking.database import Base, get_db
from repair_booking.models import Booking, BookingRequest, Technician
from repair_booking.services.email_service import EmailService
from repair_booking.services.notifications import NotificationDispatcher, get_dispatcher
from repair_booking.services.offer_allocator import build_offer
from repair_booking.services.payment_service import PaymentService, get_payment_service
from repair_booking.services.sms_service import TwilioService
from repair_booking.services.token_codec import now_ms
from repair_booking.services.zone_resolver import ZoneResolver, get_zone_resolver
from repair_booking.services.zones import Slot

# Use in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

SECRET = "test-signing-secret"
WEBHOOK_SECRET = "whsec_test_secret"
GEOCODE_URL = "https://geocode.test/json"
ZONE_LOOKUP_URL = "https://zones.test/rpc/get_zone_for_lonlat"

# Monday 2026-02-02, before the first window of the day
FIXED_NOW = datetime(2026, 2, 2, 7, 0)


@pytest.fixture(scope="session")
def test_engine():
    """Create test database engine"""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def test_db_session(test_engine):
    """Create test database session"""
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestSessionLocal()

    # Create tables for this test
    Base.metadata.create_all(bind=test_engine)

    yield session

    # Cleanup
    session.close()
    Base.metadata.drop_all(bind=test_engine)


def geocode_handler(request: httpx.Request) -> httpx.Response:
    """Fake Google Geocoding and zone RPC: everything lands in zone B"""
    if request.url.host == "geocode.test":
        address = request.url.params.get("address", "")
        if "nowhere" in address.lower():
            return httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})
        return httpx.Response(200, json={
            "status": "OK",
            "results": [{
                "formatted_address": "100 Main St, Springfield, CA 90000, USA",
                "place_id": "place-123",
                "geometry": {"location": {"lat": 34.05, "lng": -118.25}},
            }],
        })
    if request.url.host == "zones.test":
        return httpx.Response(200, json=[{"zone_code": "B", "zone_name": "Zone B"}])
    return httpx.Response(404)


@pytest.fixture
def zone_resolver():
    """Zone resolver backed by a mock transport"""
    resolver = ZoneResolver(
        geocoding_key="test-geocoding-key",
        geocoding_url=GEOCODE_URL,
        zone_lookup_url=ZONE_LOOKUP_URL,
        zone_lookup_key="test-zone-key",
        transport=httpx.MockTransport(geocode_handler),
    )
    yield resolver
    resolver.close()


@pytest.fixture
def dispatcher():
    """Dispatcher with SMS and email in test mode"""
    return NotificationDispatcher(
        sms=TwilioService(account_sid="", auth_token="", phone_number=""),
        email=EmailService(api_key=""),
    )


@pytest.fixture
def payment_service():
    return PaymentService(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, fee_cents=8000)


@pytest.fixture
def client(test_db_session, zone_resolver, dispatcher, payment_service, monkeypatch):
    """Create test client"""
    from repair_booking.api import admin_routes, routes
    from repair_booking.main import app

    def override_get_db():
        yield test_db_session

    monkeypatch.setattr(routes, "local_now", lambda: FIXED_NOW)
    monkeypatch.setattr(admin_routes, "local_now", lambda: FIXED_NOW)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_zone_resolver] = lambda: zone_resolver
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": settings.admin_api_key}


@pytest.fixture
def make_request(test_db_session):
    """Factory for stored booking requests"""

    def _make(zone_code="B", appointment_type="standard", **fields):
        values = {
            "name": "Jane Doe",
            "phone": "(555) 123-4567",
            "email": "jane@example.com",
            "contact_method": "both",
            "address": "100 Main St",
            "zone_code": zone_code,
            "zone_name": f"Zone {zone_code}",
            "appointment_type": appointment_type,
            "status": "sent",
        }
        values.update(fields)
        request = BookingRequest(**values)
        test_db_session.add(request)
        test_db_session.commit()
        test_db_session.refresh(request)
        return request

    return _make


@pytest.fixture
def make_offer(test_db_session):
    """Factory for stored offers with signed tokens"""

    def _make(request, service_date=date(2026, 2, 9), slot_index=1, zone_code=None,
              offer_group="primary", expires_at_ms=None):
        slot = Slot.from_template(service_date, slot_index, zone_code or request.zone_code)
        expires_at = expires_at_ms if expires_at_ms is not None else now_ms() + 3600 * 1000
        offer = build_offer(request, slot, offer_group, SECRET, expires_at)
        test_db_session.add(offer)
        test_db_session.commit()
        test_db_session.refresh(offer)
        return offer

    return _make


@pytest.fixture
def sample_technician(test_db_session):
    """Create sample technician for zone B"""
    tech = Technician(name="Sam Tech", phone="+15550001111", zone_code="B", active=True)
    test_db_session.add(tech)
    test_db_session.commit()
    test_db_session.refresh(tech)
    return tech


@pytest.fixture
def sample_booking(test_db_session, make_request):
    """Create sample booking on Monday 2026-02-09, slot 1"""
    request = make_request(status="booked")
    slot = Slot.from_template(date(2026, 2, 9), 1, "B")
    booking = Booking(
        request_id=request.id,
        slot_code=slot.slot_code,
        zone_code="B",
        appointment_type="standard",
        status="scheduled",
        window_start=slot.start_at,
        window_end=slot.end_at,
        job_ref="DR-ABC123",
        base_fee_cents=8000,
    )
    test_db_session.add(booking)
    test_db_session.commit()
    test_db_session.refresh(booking)
    return booking


# Test markers
def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
