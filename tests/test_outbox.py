from datetime import datetime, timedelta, timezone

import pytest

from foodrelay.services.outbox import deliver_due, enqueue_email
from foodrelay.services.notifier import send_many

pytestmark = pytest.mark.anyio


async def test_nothing_due(repo, mailer):
    assert await deliver_due(repo, mailer) is False


async def test_due_message_is_delivered(repo, mailer):
    msg = await enqueue_email(repo, "roti-bank@example.org", "Your food pickup code", "code 123456")

    assert await deliver_due(repo, mailer) is True
    assert mailer.sent == [{"to": "roti-bank@example.org", "subject": "Your food pickup code", "body": "code 123456"}]
    assert repo.outbox[msg["_id"]]["status"] == "delivered"
    assert await deliver_due(repo, mailer) is False


async def test_failure_backs_off_then_dies(repo, mailer):
    mailer.fail_for.add("roti-bank@example.org")
    msg = await enqueue_email(repo, "roti-bank@example.org", "s", "b", max_attempts=2)

    before = datetime.now(timezone.utc)
    assert await deliver_due(repo, mailer) is True
    rec = repo.outbox[msg["_id"]]
    assert rec["status"] == "pending"
    assert rec["attempts"] == 1
    assert rec["last_error"] == "Email sending failed"
    assert rec["next_try_at"] >= before + timedelta(seconds=2)

    # not due yet
    assert await deliver_due(repo, mailer) is False

    later = datetime.now(timezone.utc) + timedelta(minutes=5)
    assert await deliver_due(repo, mailer, now=later) is True
    assert repo.outbox[msg["_id"]]["status"] == "dead"
    assert repo.outbox[msg["_id"]]["attempts"] == 2
    assert await deliver_due(repo, mailer, now=later) is False


async def test_send_many_is_best_effort(mailer):
    mailer.fail_for.add("b@example.org")
    results = await send_many(mailer, ["a@example.org", "b@example.org", "a@example.org", ""], "s", "b")
    assert results == {"a@example.org": True, "b@example.org": False}
    assert [m["to"] for m in mailer.sent] == ["a@example.org"]
