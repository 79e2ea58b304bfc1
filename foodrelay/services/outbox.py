import asyncio
import logging
from datetime import datetime, timedelta, timezone

from pymongo.errors import PyMongoError

from foodrelay.core.errors import DispatchError

log = logging.getLogger(__name__)

def _utcnow():
    return datetime.now(timezone.utc)

async def enqueue_email(repo, to: str, subject: str, body: str, max_attempts: int = 6,
                        last_error: str | None = None) -> dict:
    """Queue an email that must eventually go out; the worker retries it."""
    return await repo.enqueue_outbox({
        "to": to,
        "subject": subject,
        "body": body,
        "attempts": 0,
        "max_attempts": max_attempts,
        "next_try_at": _utcnow(),
        "status": "pending",
        "last_error": last_error,
        "created_at": _utcnow(),
    })

async def deliver_due(repo, mailer, now: datetime | None = None) -> bool:
    """Try one due message. Returns False when nothing was due."""
    rec = await repo.claim_outbox(now or _utcnow())
    if not rec:
        return False

    try:
        await mailer.send(rec["to"], rec["subject"], rec["body"])
    except DispatchError as ex:
        attempts = rec.get("attempts", 0) + 1
        if attempts >= rec.get("max_attempts", 6):
            log.error("outbox message %s to %s dead after %d attempts", rec["_id"], rec["to"], attempts)
            await repo.update_outbox(rec["_id"], {"status": "dead", "attempts": attempts, "last_error": ex.message})
            return True
        delay = min(60, 2 ** attempts)  # backoff up to 60s
        log.info("outbox message %s retry %d in %ds", rec["_id"], attempts, delay)
        await repo.update_outbox(rec["_id"], {
            "status": "pending",
            "attempts": attempts,
            "last_error": ex.message,
            "next_try_at": _utcnow() + timedelta(seconds=delay),
        })
        return True

    await repo.update_outbox(rec["_id"], {"status": "delivered", "delivered_at": _utcnow()})
    return True

async def run_outbox_loop(repo, mailer, poll_seconds: float = 5.0):
    while True:
        try:
            busy = await deliver_due(repo, mailer)
        except PyMongoError as ex:
            log.warning("outbox poll failed: %s", ex)
            busy = False
        if not busy:
            await asyncio.sleep(poll_seconds)
