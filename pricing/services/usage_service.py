# pricing/services/usage_service.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set

from ..errors import ConcurrencyError
from ..model.order import CustomerHistory, Order, PricedOrder
from ..model.rules import Combo, Coupon, Promotion
from ..utils.timeparse import utcnow
from .pricing_service import price_order
from .usage_store import CounterKey, UsageStore

logger = logging.getLogger(__name__)


class Claim(str, Enum):
    UNLIMITED = "unlimited"    # no limit, nothing counted
    CLAIMED = "claimed"        # counter incremented
    EXHAUSTED = "exhausted"    # limit reached, or the race was lost twice


def claim_usage(store: UsageStore, key: CounterKey) -> Claim:
    """
    Take one use of `key`. A lost compare-and-set is retried once against
    the fresh count; losing again counts as exhausted.
    """
    for attempt in (1, 2):
        snap = store.snapshot(key)
        if snap.unlimited:
            return Claim.UNLIMITED
        if not snap.has_room():
            return Claim.EXHAUSTED
        try:
            store.compare_and_increment(key, snap.usage_count)
            return Claim.CLAIMED
        except ConcurrencyError as e:
            logger.warning("usage claim for %s lost a race (attempt %d): %s", key, attempt, e)
    return Claim.EXHAUSTED


@dataclass
class UsageReceipt:
    order_id: str
    claimed: List[CounterKey] = field(default_factory=list)
    rejected: List[CounterKey] = field(default_factory=list)
    replayed: bool = False


def record_usage(
    store: UsageStore,
    order_id: str,
    applied: Iterable[CounterKey],
    customer_id: Optional[str] = None,
) -> UsageReceipt:
    """
    Record one redemption per applied construct for `order_id`.
    Calling it again for the same order changes nothing and reports the
    keys recorded the first time.
    """
    with store.transaction():
        previous = store.begin_completion(order_id, customer_id)
        if previous is not None:
            logger.info("order %s already recorded, replaying", order_id)
            return UsageReceipt(order_id, claimed=previous, replayed=True)
        receipt = UsageReceipt(order_id)
        for key in applied:
            if claim_usage(store, key) is Claim.EXHAUSTED:
                receipt.rejected.append(key)
            else:
                receipt.claimed.append(key)
        store.finish_completion(order_id, customer_id, receipt.claimed)
    return receipt


@dataclass
class CompletionResult:
    priced: PricedOrder
    claimed: List[CounterKey]
    rejected: List[CounterKey]
    replayed: bool = False


def _key(construct) -> CounterKey:
    return (construct.kind.value, construct.id)


def _with_counts(store: UsageStore, promotions: Sequence[Promotion], coupon: Optional[Coupon]):
    """Register every limited construct and refresh its usage_count from the store."""
    def refresh(c):
        if c.usage_limit <= 0:
            return c
        store.register(_key(c), c.usage_limit, c.usage_count)
        return replace(c, usage_count=store.snapshot(_key(c)).usage_count)

    return [refresh(p) for p in promotions], (refresh(coupon) if coupon else None)


def _replay(order, promotions, combos, coupon, recorded: Set[CounterKey], now) -> PricedOrder:
    # limits were already paid for on the first completion
    keep = [replace(p, usage_limit=0, per_user_limit=0) for p in promotions if _key(p) in recorded]
    c = None
    if coupon is not None and _key(coupon) in recorded:
        c = replace(coupon, usage_limit=0, per_user_limit=0, first_order_only=False)
    return price_order(order, keep, combos, c, history=CustomerHistory(order.customer_id), now=now)


def complete_order(
    store: UsageStore,
    order: Order,
    promotions: Sequence[Promotion] = (),
    combos: Sequence[Combo] = (),
    coupon: Optional[Coupon] = None,
    *,
    now: Optional[datetime] = None,
) -> CompletionResult:
    """
    Price `order` for real and take one use of every applied coupon and
    promotion that has a usage limit, all in one store transaction.
    Constructs whose limit is hit meanwhile are dropped and the order is
    priced again without them. Idempotent per order id.
    """
    now = now or utcnow()
    history = store.customer_history(order.customer_id)

    with store.transaction():
        previous = store.begin_completion(order.order_id, order.customer_id)
        if previous is not None:
            logger.info("order %s already completed, replaying", order.order_id)
            priced = _replay(order, promotions, combos, coupon, set(previous), now)
            return CompletionResult(priced, claimed=list(previous), rejected=[], replayed=True)

        promotions, coupon = _with_counts(store, promotions, coupon)
        excluded: Set[CounterKey] = set()
        granted: Set[CounterKey] = set()
        counted: Set[CounterKey] = set()

        while True:
            priced = price_order(order, promotions, combos, coupon,
                                 history=history, now=now, excluded=excluded)
            lost = []
            for key in priced.applied_keys():
                if key in granted:
                    continue
                outcome = claim_usage(store, key)
                if outcome is Claim.EXHAUSTED:
                    lost.append(key)
                    continue
                granted.add(key)
                if outcome is Claim.CLAIMED:
                    counted.add(key)
            if not lost:
                break
            logger.warning("order %s: usage exhausted for %s, repricing", order.order_id, lost)
            excluded.update(lost)

        applied = priced.applied_keys()
        for key in counted - set(applied):
            store.release(key)
        store.finish_completion(order.order_id, order.customer_id, applied)

    logger.info("order %s completed: total=%s applied=%s", order.order_id, priced.total, applied)
    return CompletionResult(priced, claimed=applied, rejected=sorted(excluded))
