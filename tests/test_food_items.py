import pytest

from conftest import DONOR_POINT, KNOWN_ADDRESSES, north_of, register
from foodrelay.services.proximity import SUBJECT

pytestmark = pytest.mark.anyio

ITEM = {"description": "25 biryani boxes", "quantity": "25 boxes", "coverImageRef": "img://biryani"}


async def test_new_item_notifies_nearby_ngos(test_client, matcher, mailer):
    _, donor_h = await register(test_client, "donor", "annapurna", DONOR_POINT)
    await register(test_client, "ngo", "near", north_of(DONOR_POINT, 4))
    await register(test_client, "ngo", "outer", north_of(DONOR_POINT, 9))
    await register(test_client, "ngo", "distant", north_of(DONOR_POINT, 40))

    r = await test_client.post("/food-items", headers=donor_h, json=ITEM)
    assert r.status_code == 201, r.text
    created = r.json()
    assert created["searchStarted"] is True
    item = created["foodItem"]
    assert item["status"] == "available"
    assert item["location"] == {"lat": DONOR_POINT[0], "lng": DONOR_POINT[1]}

    outcome = await matcher.join(item["id"])
    assert outcome.reason == "exhausted"
    notified = [m["to"] for m in mailer.sent if m["subject"] == SUBJECT]
    assert notified == ["near@example.org", "outer@example.org"]
    assert "25 biryani boxes" in mailer.sent[0]["body"]


async def test_item_address_overrides_donor_location(test_client, matcher):
    _, donor_h = await register(test_client, "donor", "annapurna", DONOR_POINT)
    r = await test_client.post("/food-items", headers=donor_h,
                               json={**ITEM, "address": "Karol Bagh, New Delhi"})
    assert r.status_code == 201
    lat, lng = KNOWN_ADDRESSES["Karol Bagh, New Delhi"]
    assert r.json()["foodItem"]["location"] == {"lat": lat, "lng": lng}
    await matcher.join(r.json()["foodItem"]["id"])


async def test_item_without_any_location_does_not_search(test_client, matcher):
    _, donor_h = await register(test_client, "donor", "unlocated", None)
    r = await test_client.post("/food-items", headers=donor_h, json=ITEM)
    assert r.status_code == 201
    assert r.json()["searchStarted"] is False
    assert not matcher.is_running(r.json()["foodItem"]["id"])


async def test_only_donors_create_items(test_client):
    _, ngo_h = await register(test_client, "ngo", "roti-bank", DONOR_POINT)
    r = await test_client.post("/food-items", headers=ngo_h, json=ITEM)
    assert r.status_code == 403

    r = await test_client.post("/food-items", json=ITEM)
    assert r.status_code == 401


async def test_interest_claims_item_and_emails_donor(test_client, repo, matcher, mailer, monkeypatch):
    _, donor_h = await register(test_client, "donor", "annapurna", DONOR_POINT)
    ngo, ngo_h = await register(test_client, "ngo", "roti-bank", north_of(DONOR_POINT, 2))
    _, rival_h = await register(test_client, "ngo", "seva-trust", north_of(DONOR_POINT, 3))

    r = await test_client.post("/food-items", headers=donor_h, json=ITEM)
    item_id = r.json()["foodItem"]["id"]

    r = await test_client.post(f"/food-items/{item_id}/interest", headers=ngo_h)
    assert r.status_code == 200, r.text
    assert r.json()["foodItem"]["status"] == "claimed"
    assert r.json()["foodItem"]["claimedBy"] == ngo["id"]

    outcome = await matcher.join(item_id)
    # the search may be cancelled before its first round ever ran
    assert outcome is None or outcome.reason in ("cancelled", "claimed", "exhausted")
    assert not matcher.is_running(item_id)

    donor_mail = mailer.to("annapurna@example.org")
    assert len(donor_mail) == 1
    assert "Roti-Bank" in donor_mail[0]["body"]

    # same NGO again is a no-op
    again = await test_client.post(f"/food-items/{item_id}/interest", headers=ngo_h)
    assert again.status_code == 200
    assert len(mailer.to("annapurna@example.org")) == 1

    rival = await test_client.post(f"/food-items/{item_id}/interest", headers=rival_h)
    assert rival.status_code == 409
    assert rival.json()["message"] == "Food item is no longer available"
    assert repo.food_items[item_id]["claimed_by"] == ngo["id"]


async def test_listing_items(test_client, matcher):
    _, donor_h = await register(test_client, "donor", "annapurna", DONOR_POINT)
    _, other_h = await register(test_client, "donor", "dhaba-22", DONOR_POINT)
    _, ngo_h = await register(test_client, "ngo", "roti-bank", north_of(DONOR_POINT, 2))

    mine = (await test_client.post("/food-items", headers=donor_h, json=ITEM)).json()["foodItem"]
    theirs = (await test_client.post("/food-items", headers=other_h,
                                     json={**ITEM, "description": "idli"})).json()["foodItem"]
    await matcher.join(mine["id"])
    await matcher.join(theirs["id"])
    await test_client.post(f"/food-items/{theirs['id']}/interest", headers=ngo_h)

    r = await test_client.get("/food-items/mine", headers=donor_h)
    assert [i["id"] for i in r.json()] == [mine["id"]]

    r = await test_client.get("/food-items/available")
    assert [i["id"] for i in r.json()] == [mine["id"]]

    r = await test_client.get(f"/food-items/{theirs['id']}", headers=ngo_h)
    assert r.json()["status"] == "claimed"

    r = await test_client.get("/food-items/unknown", headers=ngo_h)
    assert r.status_code == 404
