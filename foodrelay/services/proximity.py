# foodrelay/services/proximity.py
"""
Expanding-radius NGO search for a freshly listed food item.

Each round re-queries the NGO directory for the full current radius, emails
the NGOs that have not heard about this item yet, then waits out the backoff
and widens the radius. The loop ends when the item stops being ``available``
(an NGO registered interest or a delivery started), when the radius / attempt
bounds are reached, or, with ``stop_on_first_match``, after the first round
that reached anybody.
"""
import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from pymongo.errors import PyMongoError

from foodrelay.core.config import Settings
from foodrelay.services.notifier import send_many

log = logging.getLogger(__name__)

SUBJECT = "Food Donation Opportunity Nearby!"
_KEEP_OUTCOMES = 256


@dataclass(frozen=True)
class SearchPolicy:
    initial_radius_km: float = 5.0
    radius_step_km: float = 5.0
    max_radius_km: float = 50.0
    max_attempts: int = 10
    backoff_seconds: float = 2 * 60 * 60
    stop_on_first_match: bool = False

    @classmethod
    def from_settings(cls, cfg: Settings) -> "SearchPolicy":
        return cls(
            initial_radius_km=cfg.proximity_initial_radius_km,
            radius_step_km=cfg.proximity_radius_step_km,
            max_radius_km=cfg.proximity_max_radius_km,
            max_attempts=cfg.proximity_max_attempts,
            backoff_seconds=cfg.proximity_backoff_seconds,
            stop_on_first_match=cfg.proximity_stop_on_first_match,
        )


@dataclass
class SearchOutcome:
    food_item_id: str
    reason: str = "running"       # claimed | matched | exhausted | missing | cancelled
    rounds: int = 0
    radius_km: float = 0.0
    notified: List[str] = field(default_factory=list)   # ngo ids, in notification order


def opportunity_body(item: dict, radius_km: float) -> str:
    return (
        "Hello,\n\n"
        f"A food donation is available within {radius_km:g} km of your location:\n"
        f"  {item.get('description', '')} ({item.get('quantity', '')})\n\n"
        f"Register your interest for food item {item['_id']} to claim it.\n\n"
        "Thank you for your support!"
    )


class ProximityMatcher:
    def __init__(self, repo, mailer, policy: SearchPolicy,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.repo = repo
        self.mailer = mailer
        self.policy = policy
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        self.outcomes: "OrderedDict[str, SearchOutcome]" = OrderedDict()

    def start(self, food_item_id: str, lat: float, lng: float, exclude: Iterable[str] = ()) -> bool:
        """
        Fire-and-forget search; a no-op if one is already running for the item.
        NGOs in ``exclude`` were already told about this item and are skipped.
        """
        running = self._tasks.get(food_item_id)
        if running and not running.done():
            return False
        task = asyncio.create_task(self.run_search(food_item_id, lat, lng, exclude),
                                   name=f"proximity:{food_item_id}")
        self._tasks[food_item_id] = task
        task.add_done_callback(lambda t, key=food_item_id: self._forget(key, t))
        return True

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled() and task.exception() is not None:
            log.error("proximity search for %s crashed", key, exc_info=task.exception())

    def is_running(self, food_item_id: str) -> bool:
        task = self._tasks.get(food_item_id)
        return bool(task and not task.done())

    def cancel(self, food_item_id: str) -> bool:
        task = self._tasks.get(food_item_id)
        if not task or task.done():
            return False
        task.cancel()
        return True

    async def join(self, food_item_id: str) -> Optional[SearchOutcome]:
        task = self._tasks.get(food_item_id)
        if task:
            try:
                await task
            except asyncio.CancelledError:
                pass
        return self.outcomes.get(food_item_id)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _record(self, outcome: SearchOutcome) -> None:
        self.outcomes[outcome.food_item_id] = outcome
        self.outcomes.move_to_end(outcome.food_item_id)
        while len(self.outcomes) > _KEEP_OUTCOMES:
            self.outcomes.popitem(last=False)

    def notified_for(self, food_item_id: str) -> List[str]:
        outcome = self.outcomes.get(food_item_id)
        return list(outcome.notified) if outcome else []

    async def run_search(self, food_item_id: str, lat: float, lng: float,
                         exclude: Iterable[str] = ()) -> SearchOutcome:
        p = self.policy
        outcome = SearchOutcome(food_item_id=food_item_id, radius_km=p.initial_radius_km)
        # carried over so a restarted search keeps one email per NGO per item
        outcome.notified = list(dict.fromkeys(exclude))
        self._record(outcome)
        notified = set(outcome.notified)
        radius = p.initial_radius_km

        while True:
            outcome.rounds += 1
            outcome.radius_km = radius

            item = await self.repo.get_food_item(food_item_id)
            if not item:
                outcome.reason = "missing"
                break
            if item.get("status") != "available":
                outcome.reason = "claimed"
                break

            try:
                ngos = await self.repo.ngos_within(lat, lng, radius)
            except PyMongoError as ex:
                # same radius again on the next attempt
                log.warning("NGO directory query failed for %s at %g km: %s", food_item_id, radius, ex)
            else:
                fresh = [n for n in ngos if n["_id"] not in notified and n.get("email")]
                reached = 0
                if fresh:
                    results = await send_many(
                        self.mailer, [n["email"] for n in fresh], SUBJECT, opportunity_body(item, radius)
                    )
                    for n in fresh:
                        if results.get(n["email"]):
                            notified.add(n["_id"])
                            outcome.notified.append(n["_id"])
                            reached += 1
                log.info("proximity round %d for %s: radius=%g km, found=%d, notified=%d",
                         outcome.rounds, food_item_id, radius, len(ngos), reached)

                if reached and p.stop_on_first_match:
                    outcome.reason = "matched"
                    break
                if radius >= p.max_radius_km:
                    outcome.reason = "exhausted"
                    break
                radius = min(radius + p.radius_step_km, p.max_radius_km)

            if outcome.rounds >= p.max_attempts:
                outcome.reason = "exhausted"
                break
            try:
                await self._sleep(p.backoff_seconds)
            except asyncio.CancelledError:
                outcome.reason = "cancelled"
                log.info("proximity search for %s cancelled after %d round(s)", food_item_id, outcome.rounds)
                raise

        log.info("proximity search for %s finished: %s after %d round(s), %d NGO(s) notified",
                 food_item_id, outcome.reason, outcome.rounds, len(outcome.notified))
        return outcome
