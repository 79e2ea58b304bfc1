import asyncio

import pytest
from datetime import datetime, timezone

from pymongo.errors import AutoReconnect

from foodrelay.services.geo import geo_point
from foodrelay.services.proximity import ProximityMatcher, SearchPolicy
from conftest import DONOR_POINT, RecordingMailer, no_sleep, north_of

pytestmark = pytest.mark.anyio


async def _seed_ngo(repo, username, km):
    lat, lng = north_of(DONOR_POINT, km)
    return await repo.create_account("ngo", {
        "username": username, "email": f"{username}@example.org", "name": username,
        "location": {"lat": lat, "lng": lng}, "geo": geo_point(lat, lng),
        "created_at": datetime.now(timezone.utc),
    })

async def _seed_item(repo):
    return await repo.create_food_item({
        "donor_id": "D1", "description": "40 veg thalis", "quantity": "40 plates",
        "cover_image_ref": "img://thali", "status": "available",
        "location": {"lat": DONOR_POINT[0], "lng": DONOR_POINT[1]},
        "created_at": datetime.now(timezone.utc),
    })


async def test_radius_grows_and_each_round_requeries_full_radius(repo, mailer, matcher):
    near = await _seed_ngo(repo, "near", 3)
    mid = await _seed_ngo(repo, "mid", 7)
    far = await _seed_ngo(repo, "far", 12)
    item = await _seed_item(repo)

    outcome = await matcher.run_search(item["_id"], *DONOR_POINT)

    assert outcome.notified == [near["_id"], mid["_id"], far["_id"]]
    assert outcome.reason == "exhausted"
    assert outcome.rounds == 3
    assert outcome.radius_km == 15
    # one email per NGO, never re-sent
    assert [m["to"] for m in mailer.sent] == ["near@example.org", "mid@example.org", "far@example.org"]


async def test_first_round_only_reaches_initial_radius(repo, mailer):
    await _seed_ngo(repo, "near", 3)
    await _seed_ngo(repo, "mid", 7)
    item = await _seed_item(repo)
    rounds = []

    async def claim_after_first_round(_seconds):
        rounds.append(len(mailer.sent))
        await repo.cas_food_item(item["_id"], {"status": "available"}, {"status": "claimed", "claimed_by": "N1"})

    m = ProximityMatcher(repo, mailer, SearchPolicy(5, 5, 50, 10, 7200), sleep=claim_after_first_round)
    outcome = await m.run_search(item["_id"], *DONOR_POINT)

    assert rounds == [1]
    assert [x["to"] for x in mailer.sent] == ["near@example.org"]
    assert outcome.reason == "claimed"
    assert outcome.rounds == 2


async def test_boundary_distance_is_inclusive(repo, mailer, matcher):
    edge = await _seed_ngo(repo, "edge", 5)
    item = await _seed_item(repo)

    outcome = await matcher.run_search(item["_id"], *DONOR_POINT)

    assert outcome.notified[0] == edge["_id"]
    assert len(mailer.to("edge@example.org")) == 1


async def test_stop_on_first_match(repo, mailer):
    await _seed_ngo(repo, "mid", 7)
    await _seed_ngo(repo, "far", 12)
    item = await _seed_item(repo)
    policy = SearchPolicy(5, 5, 50, 10, 7200, stop_on_first_match=True)

    outcome = await ProximityMatcher(repo, mailer, policy, sleep=no_sleep).run_search(item["_id"], *DONOR_POINT)

    assert outcome.reason == "matched"
    assert outcome.rounds == 2
    assert [x["to"] for x in mailer.sent] == ["mid@example.org"]


async def test_search_is_bounded_when_nobody_is_near(repo, mailer):
    item = await _seed_item(repo)
    slept = []

    async def record(seconds):
        slept.append(seconds)

    policy = SearchPolicy(5, 5, 1000, 4, 7200)
    outcome = await ProximityMatcher(repo, mailer, policy, sleep=record).run_search(item["_id"], *DONOR_POINT)

    assert outcome.reason == "exhausted"
    assert outcome.rounds == 4
    assert slept == [7200, 7200, 7200]
    assert mailer.sent == []


async def test_failed_email_is_swallowed_and_retried_next_round(repo, matcher, mailer):
    await _seed_ngo(repo, "flaky", 3)
    await _seed_ngo(repo, "steady", 4)
    item = await _seed_item(repo)
    mailer.fail_for.add("flaky@example.org")

    outcome = await matcher.run_search(item["_id"], *DONOR_POINT)

    assert [x["to"] for x in mailer.sent] == ["steady@example.org"]
    assert len(outcome.notified) == 1
    assert outcome.reason == "exhausted"
    # flaky is offered again every round, steady only once
    assert mailer.attempts.count("flaky@example.org") == outcome.rounds == 3
    assert mailer.attempts.count("steady@example.org") == 1


async def test_directory_failure_retries_same_radius(repo, mailer):
    near = await _seed_ngo(repo, "near", 3)
    item = await _seed_item(repo)
    real_query = repo.ngos_within
    radii = []

    async def flaky_query(lat, lng, radius_km):
        radii.append(radius_km)
        if len(radii) == 1:
            raise AutoReconnect("primary stepped down")
        return await real_query(lat, lng, radius_km)

    repo.ngos_within = flaky_query
    policy = SearchPolicy(5, 5, 10, 10, 7200)
    outcome = await ProximityMatcher(repo, mailer, policy, sleep=no_sleep).run_search(item["_id"], *DONOR_POINT)

    assert radii == [5, 5, 10]
    assert outcome.notified == [near["_id"]]


async def test_missing_item_stops_immediately(repo, matcher, mailer):
    await _seed_ngo(repo, "near", 3)
    outcome = await matcher.run_search("64b000000000000000000000", *DONOR_POINT)
    assert outcome.reason == "missing"
    assert mailer.sent == []


async def test_start_is_deduplicated_and_cancel_drops_the_task(repo):
    item = await _seed_item(repo)
    gate = []

    async def park(_seconds):
        gate.append(1)
        await asyncio.sleep(3600)

    m = ProximityMatcher(repo, RecordingMailer(), SearchPolicy(5, 5, 50, 10, 7200), sleep=park)
    assert m.start(item["_id"], *DONOR_POINT) is True
    assert m.start(item["_id"], *DONOR_POINT) is False
    assert m.is_running(item["_id"])

    while not gate:
        await asyncio.sleep(0)
    assert m.cancel(item["_id"]) is True

    outcome = await m.join(item["_id"])
    assert outcome.reason == "cancelled"
    assert not m.is_running(item["_id"])
    assert m.cancel(item["_id"]) is False


async def test_shutdown_cancels_everything(repo):
    a = await _seed_item(repo)
    b = await _seed_item(repo)

    async def park(_seconds):
        await asyncio.sleep(3600)

    m = ProximityMatcher(repo, RecordingMailer(), SearchPolicy(5, 5, 50, 10, 7200), sleep=park)
    m.start(a["_id"], *DONOR_POINT)
    m.start(b["_id"], *DONOR_POINT)
    await m.shutdown()
    assert not m.is_running(a["_id"]) and not m.is_running(b["_id"])
