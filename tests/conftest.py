"""
Shared fixtures and in-memory test doubles.

- FakeRedis: the subset of redis.asyncio commands used by the job queue, the
  rate limiter and the status channel, with a pub/sub implementation. The
  queue and limiter Lua scripts are run by equivalent Python handlers.
- InMemoryOrderStore: order store with the same interface as OrderStore,
  applying the same Order state machine rules.
- FakeVenue: venue adapter returning canned quotes or raising.
"""
import asyncio
import copy
import fnmatch
import time
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aresponses import ResponsesMockServer

from swap_engine.dex import DexRouter, Quote, SwapParams, VenueAdapter
from swap_engine.exceptions import OrderNotFoundError
from swap_engine.execution import SimulatedSettlement
from swap_engine.execution.orders import Order, utcnow
from swap_engine.jobs.queue import ENQUEUE_SCRIPT, EXTEND_LOCK_SCRIPT, FINISH_SCRIPT
from swap_engine.jobs.rate_limiter import ACQUIRE_SCRIPT
from swap_engine.models import OrderJob, OrderStatus, TERMINAL_STATUSES
from swap_engine.pubsub import StatusChannel
from swap_engine.tokens import TokenRegistry


# ============================================================================
# Redis
# ============================================================================

class FakePubSub:
    def __init__(self, server: "FakeRedis"):
        self.server = server
        self.channels = set()
        self.messages: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels):
        for channel in channels:
            self.channels.add(channel)
        self.server.pubsubs.append(self)

    async def unsubscribe(self, *channels):
        for channel in channels or list(self.channels):
            self.channels.discard(channel)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        try:
            return await asyncio.wait_for(self.messages.get(), timeout=timeout or 0.01)
        except asyncio.TimeoutError:
            return None

    async def aclose(self):
        self.closed = True
        if self in self.server.pubsubs:
            self.server.pubsubs.remove(self)


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (decode_responses=True)."""

    def __init__(self):
        self.strings: Dict[str, str] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.lists: Dict[str, List[str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.published: List[Tuple[str, str]] = []
        self.pubsubs: List[FakePubSub] = []
        self.fail_publish = False

    async def ping(self):
        return True

    async def aclose(self):
        pass

    # --- strings ---

    async def set(self, key, value, nx=False, px=None, ex=None):
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        return True

    async def get(self, key):
        return self.strings.get(key)

    async def exists(self, *keys):
        return sum(1 for k in keys if k in self.strings or k in self.hashes or k in self.lists or k in self.zsets)

    async def delete(self, *keys):
        removed = 0
        for store in (self.strings, self.hashes, self.lists, self.zsets):
            for key in keys:
                if key in store:
                    del store[key]
                    removed += 1
        return removed

    async def pexpire(self, key, ms):
        return key in self.strings

    def expire_now(self, key):
        """Simulate TTL expiry of a key."""
        self.strings.pop(key, None)

    def keys_matching(self, pattern):
        everything = list(self.strings) + list(self.hashes) + list(self.lists) + list(self.zsets)
        return [k for k in everything if fnmatch.fnmatch(k, pattern)]

    # --- hashes ---

    async def hsetnx(self, key, field, value):
        h = self.hashes.setdefault(key, {})
        if field in h:
            return False
        h[field] = str(value)
        return True

    async def hset(self, key, field=None, value=None, mapping=None):
        h = self.hashes.setdefault(key, {})
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        added = 0
        for f, v in items.items():
            if f not in h:
                added += 1
            h[f] = str(v)
        return added

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def hdel(self, key, *fields):
        h = self.hashes.get(key, {})
        return sum(1 for f in fields if h.pop(f, None) is not None)

    # --- lists ---

    async def lpush(self, key, *values):
        lst = self.lists.setdefault(key, [])
        for v in values:
            lst.insert(0, str(v))
        return len(lst)

    async def rpop(self, key):
        lst = self.lists.get(key)
        return lst.pop() if lst else None

    async def lrem(self, key, count, value):
        lst = self.lists.get(key, [])
        before = len(lst)
        self.lists[key] = [v for v in lst if v != value]
        return before - len(self.lists[key])

    async def lrange(self, key, start, end):
        lst = self.lists.get(key, [])
        end = len(lst) if end == -1 else end + 1
        return list(lst[start:end])

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def lmove(self, first_list, second_list, src="LEFT", dest="RIGHT"):
        lst = self.lists.get(first_list)
        if not lst:
            return None
        value = lst.pop() if src == "RIGHT" else lst.pop(0)
        target = self.lists.setdefault(second_list, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    async def blmove(self, first_list, second_list, timeout, src="LEFT", dest="RIGHT"):
        deadline = time.monotonic() + float(timeout)
        while True:
            value = await self.lmove(first_list, second_list, src, dest)
            if value is not None or time.monotonic() >= deadline:
                return value
            await asyncio.sleep(0.005)

    # --- sorted sets ---

    async def zadd(self, key, mapping):
        z = self.zsets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in z)
        z.update({m: float(s) for m, s in mapping.items()})
        return added

    async def zrangebyscore(self, key, min, max):
        lo = float("-inf") if min == "-inf" else float(min)
        hi = float("inf") if max == "+inf" else float(max)
        z = self.zsets.get(key, {})
        return [m for m, s in sorted(z.items(), key=lambda kv: kv[1]) if lo <= s <= hi]

    async def zrem(self, key, *members):
        z = self.zsets.get(key, {})
        return sum(1 for m in members if z.pop(m, None) is not None)

    async def zcard(self, key):
        return len(self.zsets.get(key, {}))

    async def zremrangebyscore(self, key, min, max):
        doomed = await self.zrangebyscore(key, min, max)
        return await self.zrem(key, *doomed) if doomed else 0

    async def zrange(self, key, start, end, withscores=False):
        ranked = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1])
        end = len(ranked) if end == -1 else end + 1
        window = ranked[start:end]
        return window if withscores else [m for m, _ in window]

    # --- scripts ---

    async def eval(self, script, numkeys, *keys_and_args):
        """Run one of the engine's Lua scripts; no await inside, so it is atomic."""
        handlers = {
            ENQUEUE_SCRIPT: self._enqueue_script,
            EXTEND_LOCK_SCRIPT: self._extend_lock_script,
            FINISH_SCRIPT: self._finish_script,
            ACQUIRE_SCRIPT: self._acquire_script,
        }
        if script not in handlers:
            raise NotImplementedError("FakeRedis cannot run this script")
        keys = [str(k) for k in keys_and_args[:numkeys]]
        args = [str(a) for a in keys_and_args[numkeys:]]
        return handlers[script](keys, args)

    def _enqueue_script(self, keys, args):
        job_key, wait_key = keys
        h = self.hashes.setdefault(job_key, {})
        if "state" in h:
            return 0
        h["state"] = args[1]
        h.update(zip(args[2::2], args[3::2]))
        self.lists.setdefault(wait_key, []).insert(0, args[0])
        return 1

    def _extend_lock_script(self, keys, args):
        return 1 if self.strings.get(keys[0]) == args[0] else 0

    def _finish_script(self, keys, args):
        lock_key, active_key, job_key, target_key = keys
        token, job_id, score = args[:3]
        holder = self.strings.get(lock_key)
        if (holder is not None) if token == "" else (holder != token):
            return 0
        active = self.lists.get(active_key, [])
        if job_id not in active:
            return 0
        self.lists[active_key] = [v for v in active if v != job_id]
        self.strings.pop(lock_key, None)
        self.hashes.setdefault(job_key, {}).update(zip(args[3::2], args[4::2]))
        if score == "":
            self.lists.setdefault(target_key, []).insert(0, job_id)
        else:
            self.zsets.setdefault(target_key, {})[job_id] = float(score)
        return 1

    def _acquire_script(self, keys, args):
        now, window, limit = int(args[0]), int(args[1]), int(args[2])
        z = self.zsets.setdefault(keys[0], {})
        for member in [m for m, s in z.items() if s <= now - window]:
            del z[member]
        if len(z) < limit:
            z[args[3]] = float(now)
            return -1
        return int(min(z.values()) + window - now)

    # --- pub/sub ---

    async def publish(self, channel, message):
        if self.fail_publish:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        receivers = 0
        for ps in list(self.pubsubs):
            if channel in ps.channels:
                ps.messages.put_nowait({"type": "message", "channel": channel, "data": message})
                receivers += 1
        return receivers

    def pubsub(self):
        return FakePubSub(self)


# ============================================================================
# Order store
# ============================================================================

class InMemoryOrderStore:
    """Order store double using the real Order transition rules."""

    def __init__(self):
        self.orders: Dict[str, Order] = {}
        self.transitions: List[Tuple[str, OrderStatus]] = []
        self.fail_next_transition: Optional[Exception] = None

    async def health_check(self) -> bool:
        return True

    async def disconnect(self):
        pass

    async def create_order(self, order: Order) -> Order:
        self.orders[order.id] = copy.deepcopy(order)
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def get_user_orders(self, user_id: int, limit: int = 50) -> List[Order]:
        orders = [o for o in self.orders.values() if o.user_id == user_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [copy.deepcopy(o) for o in orders[:limit]]

    async def get_recent_orders(self, limit: int = 50) -> List[Order]:
        orders = sorted(self.orders.values(), key=lambda o: o.created_at, reverse=True)
        return [copy.deepcopy(o) for o in orders[:limit]]

    async def delete_orders(self, user_id: int, order_ids: List[str]) -> int:
        deleted = 0
        for order_id in order_ids:
            order = self.orders.get(order_id)
            if order and order.user_id == user_id and order.status in TERMINAL_STATUSES:
                del self.orders[order_id]
                deleted += 1
        return deleted

    async def get_stale_orders(self, older_than: timedelta, limit: int = 100) -> List[Order]:
        cutoff = utcnow() - older_than
        stale = [
            o for o in self.orders.values()
            if o.status not in TERMINAL_STATUSES and o.updated_at < cutoff
        ]
        return [copy.deepcopy(o) for o in stale[:limit]]

    async def apply_transition(self, order_id, status, amount_out=None, selected_dex=None, tx_hash=None, error=None):
        if self.fail_next_transition is not None:
            e, self.fail_next_transition = self.fail_next_transition, None
            raise e
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        updated = copy.deepcopy(order)
        updated.apply_transition(status, amount_out=amount_out, selected_dex=selected_dex, tx_hash=tx_hash, error=error)
        self.orders[order_id] = updated
        self.transitions.append((order_id, status))
        return copy.deepcopy(updated)

    def statuses(self, order_id: str) -> List[OrderStatus]:
        return [s for oid, s in self.transitions if oid == order_id]


# ============================================================================
# Venues
# ============================================================================

class FakeVenue(VenueAdapter):
    """Venue returning a fixed output amount, or raising ``error``."""

    def __init__(
        self,
        venue_id: str,
        output: Optional[str] = None,
        error: Optional[Exception] = None,
        build_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.venue_id = venue_id
        self.output = Decimal(output) if output is not None else None
        self.error = error
        self.build_error = build_error
        self.delay = delay
        self.quote_calls: List[Tuple[str, str, Decimal]] = []
        self.build_calls: List[SwapParams] = []

    async def quote(self, token_in_address, token_out_address, amount_in) -> Quote:
        self.quote_calls.append((token_in_address, token_out_address, amount_in))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Quote(venue_id=self.venue_id, output_amount=self.output, pool_id=f"{self.venue_id}-pool")

    async def build_transaction(self, params: SwapParams) -> str:
        self.build_calls.append(params)
        if self.build_error is not None:
            raise self.build_error
        return f"{self.venue_id}-tx-{params.amount_in_raw}"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def registry():
    return TokenRegistry()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def channel(fake_redis):
    return StatusChannel(fake_redis)


@pytest.fixture
def settlement():
    return SimulatedSettlement(submit_delay=0, confirm_delay=0)


@pytest.fixture
def make_router(registry):
    def _make(*venues, priority=("raydium", "meteora"), quote_timeout=1.0):
        return DexRouter(list(venues), registry, venue_priority=list(priority), quote_timeout=quote_timeout)
    return _make


@pytest.fixture
def make_order(store):
    async def _make(token_in="SOL", token_out="USDC", amount_in="1.5", user_id=1) -> Order:
        order = Order.new(user_id=user_id, token_in=token_in, token_out=token_out, amount_in=Decimal(amount_in))
        await store.create_order(order)
        return order
    return _make


def job_for(order: Order, wallet: str = "Wa11et1111111111111111111111111111111111111", slippage: float = 0.01) -> OrderJob:
    return OrderJob(
        order_id=order.id,
        user_id=order.user_id,
        wallet_address=wallet,
        token_in=order.token_in,
        token_out=order.token_out,
        amount_in=order.amount_in,
        slippage=slippage,
    )


def published_updates(fake_redis: FakeRedis) -> List[Dict[str, Any]]:
    """Decoded envelopes published on the fake server."""
    import json
    return [json.loads(message) for _, message in fake_redis.published]


@pytest.fixture
def make_job():
    return job_for


@pytest.fixture
def published(fake_redis):
    return lambda: published_updates(fake_redis)


@pytest.fixture
def fake_venue():
    return FakeVenue


@pytest_asyncio.fixture
async def aresponses():
    async with ResponsesMockServer() as server:
        yield server
