# pricing/services/usage_store.py
"""
Usage counter stores.

A store owns the only shared mutable state of the engine: how many times each
coupon/promotion was redeemed, and which orders were already completed. The
single mutation primitive is compare_and_increment, which succeeds only when
the counter still holds the expected value and the limit leaves room.
"""
from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Event, RLock, get_ident
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConcurrencyError
from ..extensions import db
from ..model.order import CustomerHistory
from ..model.usage import CompletedOrder, Redemption, UsageCounter

CounterKey = Tuple[str, str]  # (kind, construct id)


def key_to_str(key: CounterKey) -> str:
    return f"{key[0]}:{key[1]}"


def key_from_str(s: str) -> CounterKey:
    kind, _, cid = s.partition(":")
    return (kind, cid)


@dataclass(frozen=True)
class CounterSnapshot:
    usage_count: int = 0
    usage_limit: int = 0

    @property
    def unlimited(self) -> bool:
        return self.usage_limit <= 0

    def has_room(self) -> bool:
        return self.unlimited or self.usage_count < self.usage_limit


class UsageStore:
    """Interface shared by the SQL and in-memory stores."""

    @contextmanager
    def transaction(self):
        yield

    def register(self, key: CounterKey, usage_limit: int, usage_count: int = 0) -> None:
        raise NotImplementedError

    def snapshot(self, key: CounterKey) -> CounterSnapshot:
        raise NotImplementedError

    def compare_and_increment(self, key: CounterKey, expected: int) -> None:
        raise NotImplementedError

    def release(self, key: CounterKey) -> None:
        raise NotImplementedError

    def begin_completion(self, order_id: str, customer_id: Optional[str]) -> Optional[List[CounterKey]]:
        """Reserve `order_id`; returns the keys recorded earlier when it was already completed."""
        raise NotImplementedError

    def finish_completion(self, order_id: str, customer_id: Optional[str], keys: List[CounterKey]) -> None:
        raise NotImplementedError

    def customer_history(self, customer_id: Optional[str]) -> CustomerHistory:
        raise NotImplementedError

    def counters(self) -> List[dict]:
        """Every known counter as {kind, construct_id, usage_count, usage_limit}."""
        raise NotImplementedError


class MemoryUsageStore(UsageStore):
    """
    Process-local store; every operation runs under one lock. An order being
    completed is marked pending until its transaction ends, and a second
    completion of the same order waits for it instead of replaying a half
    written record.
    """

    def __init__(self):
        self._lock = RLock()
        self._counters: Dict[CounterKey, CounterSnapshot] = {}
        self._completions: Dict[str, Tuple[Optional[str], List[CounterKey]]] = {}
        self._pending: Dict[str, Tuple[Event, int]] = {}
        self._redemptions: Dict[Optional[str], Dict[CounterKey, int]] = defaultdict(dict)

    @contextmanager
    def transaction(self):
        try:
            yield
        except Exception:
            self._abandon(get_ident())
            raise

    def _abandon(self, owner: int) -> None:
        with self._lock:
            for order_id, (done, who) in list(self._pending.items()):
                if who == owner:
                    del self._pending[order_id]
                    done.set()

    def register(self, key, usage_limit, usage_count=0):
        with self._lock:
            current = self._counters.get(key)
            count = max(usage_count, current.usage_count) if current else usage_count
            self._counters[key] = CounterSnapshot(count, usage_limit)

    def snapshot(self, key):
        with self._lock:
            return self._counters.get(key, CounterSnapshot())

    def compare_and_increment(self, key, expected):
        with self._lock:
            current = self._counters.get(key)
            if current is None or current.usage_count != expected or not current.has_room():
                raise ConcurrencyError(key, expected)
            self._counters[key] = CounterSnapshot(expected + 1, current.usage_limit)

    def release(self, key):
        with self._lock:
            current = self._counters.get(key)
            if current and current.usage_count > 0:
                self._counters[key] = CounterSnapshot(current.usage_count - 1, current.usage_limit)

    def begin_completion(self, order_id, customer_id):
        while True:
            with self._lock:
                if order_id in self._completions:
                    return list(self._completions[order_id][1])
                pending = self._pending.get(order_id)
                if pending is None or pending[1] == get_ident():
                    self._pending[order_id] = (pending[0] if pending else Event(), get_ident())
                    return None
                done = pending[0]
            done.wait()

    def finish_completion(self, order_id, customer_id, keys):
        with self._lock:
            self._completions[order_id] = (customer_id, list(keys))
            pending = self._pending.pop(order_id, None)
            if pending:
                pending[0].set()
            per_customer = self._redemptions[customer_id]
            for key in keys:
                per_customer[key] = per_customer.get(key, 0) + 1

    def customer_history(self, customer_id):
        with self._lock:
            done = sum(1 for cust, _ in self._completions.values() if customer_id and cust == customer_id)
            redemptions = dict(self._redemptions.get(customer_id, {})) if customer_id else {}
            return CustomerHistory(customer_id=customer_id, completed_orders=done, redemptions=redemptions)

    def counters(self):
        with self._lock:
            return [
                {"kind": kind, "construct_id": cid, "usage_count": snap.usage_count, "usage_limit": snap.usage_limit}
                for (kind, cid), snap in sorted(self._counters.items())
            ]


class SqlUsageStore(UsageStore):
    """Counters kept in the database; needs an active Flask app context."""

    def __init__(self, session=None):
        self.session = session or db.session

    @contextmanager
    def transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    @staticmethod
    def _where(key: CounterKey):
        return (UsageCounter.kind == key[0], UsageCounter.construct_id == key[1])

    def _counter(self, key: CounterKey) -> Optional[UsageCounter]:
        return self.session.query(UsageCounter).filter(*self._where(key)).first()

    def register(self, key, usage_limit, usage_count=0):
        row = self._counter(key)
        if row is None:
            try:
                with self.session.begin_nested():
                    self.session.add(UsageCounter(kind=key[0], construct_id=key[1],
                                                  usage_count=usage_count, usage_limit=usage_limit))
                return
            except IntegrityError:
                # a concurrent completion created the counter first
                row = self._counter(key)
        row.usage_limit = usage_limit
        if usage_count > (row.usage_count or 0):
            row.usage_count = usage_count
        self.session.flush()

    def snapshot(self, key):
        row = self.session.execute(
            select(UsageCounter.usage_count, UsageCounter.usage_limit).where(*self._where(key))
        ).first()
        if row is None:
            return CounterSnapshot()
        return CounterSnapshot(int(row.usage_count or 0), int(row.usage_limit or 0))

    def compare_and_increment(self, key, expected):
        res = self.session.execute(
            update(UsageCounter)
            .where(
                *self._where(key),
                UsageCounter.usage_count == expected,
                or_(UsageCounter.usage_limit == 0, UsageCounter.usage_count < UsageCounter.usage_limit),
            )
            .values(usage_count=UsageCounter.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ConcurrencyError(key, expected)

    def release(self, key):
        self.session.execute(
            update(UsageCounter)
            .where(*self._where(key), UsageCounter.usage_count > 0)
            .values(usage_count=UsageCounter.usage_count - 1)
            .execution_options(synchronize_session=False)
        )

    def begin_completion(self, order_id, customer_id):
        existing = self.session.query(CompletedOrder).filter_by(order_id=order_id).first()
        if existing is None:
            # first write of the completion transaction, so a full rollback loses nothing
            try:
                self.session.add(CompletedOrder(order_id=order_id, customer_id=customer_id, applied_json=[]))
                self.session.flush()
                return None
            except IntegrityError:
                self.session.rollback()
                existing = self.session.query(CompletedOrder).filter_by(order_id=order_id).one()
        return [key_from_str(s) for s in (existing.applied_json or [])]

    def finish_completion(self, order_id, customer_id, keys):
        row = self.session.query(CompletedOrder).filter_by(order_id=order_id).one()
        row.applied_json = [key_to_str(k) for k in keys]
        for kind, cid in keys:
            self.session.add(Redemption(kind=kind, construct_id=cid, customer_id=customer_id, order_id=order_id))
        self.session.flush()

    def customer_history(self, customer_id):
        if not customer_id:
            return CustomerHistory(customer_id=customer_id)
        done = self.session.query(func.count(CompletedOrder.id)).filter(
            CompletedOrder.customer_id == customer_id
        ).scalar() or 0
        rows = (
            self.session.query(Redemption.kind, Redemption.construct_id, func.count(Redemption.id))
            .filter(Redemption.customer_id == customer_id)
            .group_by(Redemption.kind, Redemption.construct_id)
            .all()
        )
        return CustomerHistory(
            customer_id=customer_id,
            completed_orders=int(done),
            redemptions={(kind, cid): int(n) for kind, cid, n in rows},
        )

    def counters(self):
        rows = self.session.query(UsageCounter).order_by(UsageCounter.kind, UsageCounter.construct_id).all()
        return [r.as_api() for r in rows]


def usage_store_for(app) -> UsageStore:
    """Store selected by PRICING_USAGE_STORE; the memory store is created once per app."""
    if (app.config.get("PRICING_USAGE_STORE") or "sql").lower() == "memory":
        return app.extensions.setdefault("pricing_usage_store", MemoryUsageStore())
    return SqlUsageStore()
