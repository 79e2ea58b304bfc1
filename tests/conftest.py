# tests/conftest.py
import asyncio
import math

import pytest
from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager

from foodrelay.core.config import settings
from foodrelay.core.errors import DispatchError
from foodrelay.deps import get_geocoder, get_mailer, get_matcher, get_repo
from foodrelay.main import app
from foodrelay.repos.inmemory import InMemoryRepo
from foodrelay.services.geo import EARTH_RADIUS_KM
from foodrelay.services.geocode import GeocodeError
from foodrelay.services.proximity import ProximityMatcher, SearchPolicy

DONOR_POINT = (28.6139, 77.2090)
KM_PER_DEG_LAT = EARTH_RADIUS_KM * math.pi / 180.0

KNOWN_ADDRESSES = {
    "Connaught Place, New Delhi": (28.6315, 77.2167),
    "Karol Bagh, New Delhi": (28.6519, 77.1909),
}


def north_of(point, km):
    """A point `km` kilometres due north of `point` (exact along a meridian)."""
    return (point[0] + km / KM_PER_DEG_LAT, point[1])


class RecordingMailer:
    def __init__(self):
        self.sent = []
        self.attempts = []
        self.fail_for = set()

    async def send(self, to, subject, body):
        self.attempts.append(to)
        if to in self.fail_for:
            raise DispatchError("Email sending failed")
        self.sent.append({"to": to, "subject": subject, "body": body})

    def to(self, address):
        return [m for m in self.sent if m["to"] == address]


async def fake_geocode(address, language="en"):
    try:
        return KNOWN_ADDRESSES[address.strip()]
    except KeyError:
        raise GeocodeError(f"Geocode not found for address: {address}", status_code=404)


async def no_sleep(_seconds):
    await asyncio.sleep(0)


@pytest.fixture(scope="session")
def anyio_backend():
    # keep AnyIO on asyncio for the whole test session
    return "asyncio"

@pytest.fixture
def repo():
    return InMemoryRepo()

@pytest.fixture
def mailer():
    return RecordingMailer()

@pytest.fixture
def policy():
    return SearchPolicy(initial_radius_km=5, radius_step_km=5, max_radius_km=15,
                        max_attempts=10, backoff_seconds=7200)

@pytest.fixture
def matcher(repo, mailer, policy):
    return ProximityMatcher(repo, mailer, policy, sleep=no_sleep)

@pytest.fixture
async def test_client(repo, mailer, matcher, monkeypatch):
    monkeypatch.setattr(settings, "outbox_enabled", False)
    app.dependency_overrides[get_repo] = lambda: repo
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_matcher] = lambda: matcher
    app.dependency_overrides[get_geocoder] = lambda: fake_geocode
    try:
        async with LifespanManager(app):
            transport = ASGITransport(app=app, raise_app_exceptions=True)
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                yield ac
    finally:
        app.dependency_overrides.clear()


async def register(ac: AsyncClient, role: str, username: str, point=None, **extra):
    """Register + login; returns (account, headers)."""
    prefix = "/donors" if role == "donor" else "/ngos"
    body = {
        "username": username,
        "email": f"{username}@example.org",
        "password": "s3cret",
        "name": username.title(),
        "contactInfo": "+91 98100 00000",
    }
    if point:
        body["location"] = {"lat": point[0], "lng": point[1]}
    if role == "ngo":
        body["ngoLicense"] = f"NGO-{username}"
    body.update(extra)
    r = await ac.post(f"{prefix}/register", json=body)
    assert r.status_code == 201, r.text
    tok = (await ac.post(f"{prefix}/login", json={"username": username, "password": "s3cret"})).json()
    return r.json(), {"Authorization": f"Bearer {tok['accessToken']}"}
