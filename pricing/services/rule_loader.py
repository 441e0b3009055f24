# pricing/services/rule_loader.py
"""
Turns rule-store documents (camelCase, as the admin UI saves them) into the
typed rule model. Everything that can be wrong with a rule is caught here and
reported as ConfigurationError; the batch loaders log and skip the offending
construct so one bad rule never blocks checkout.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from ..errors import ConfigurationError
from ..model.rules import (
    ALL_VARIANTS, SpecificVariants, VariantMode,
    MinAmount, MinQuantity, SpecificProduct,
    PercentageOff, FixedOff, FreeShipping, Bogo,
    Promotion, Coupon, CouponDiscountType, Combo, ComboItem, ComboType, normalize_code,
)
from ..utils.money import D, MONEY, round_money
from ..utils.timeparse import parse_datetime
from .catalog import CatalogLookup, check_variants

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------- field helpers ----------

def _money(data: dict, name: str, cid: str, default=None) -> Optional[Decimal]:
    raw = data.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = D(raw)
    except (InvalidOperation, ValueError):
        raise ConfigurationError(f"{name} must be numeric, got {raw!r}", cid)
    if not value.is_finite() or value < 0:
        raise ConfigurationError(f"{name} must be a non-negative number", cid)
    return value


def _int(data: dict, name: str, cid: str, default: int = 0) -> int:
    raw = data.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", cid)
    if value < 0:
        raise ConfigurationError(f"{name} must be >= 0", cid)
    return value


def _priority(data: dict, cid: str) -> int:
    try:
        return int(data.get("priority") or 0)
    except (TypeError, ValueError):
        raise ConfigurationError(f"priority must be an integer, got {data.get('priority')!r}", cid)


def _date(data: dict, name: str, cid: str):
    try:
        return parse_datetime(data.get(name))
    except (TypeError, ValueError):
        raise ConfigurationError(f"invalid datetime for {name}: {data.get(name)!r}", cid)


def _window(data: dict, cid: str):
    start, end = _date(data, "startDate", cid), _date(data, "endDate", cid)
    if start and end and end < start:
        raise ConfigurationError("endDate must be after startDate", cid)
    return start, end


_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


def _flag(data: dict, name: str, cid: Optional[str] = None, default: bool = False) -> bool:
    # form posts arrive with every value stringified
    raw = data.get(name)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise ConfigurationError(f"{name} must be true or false, got {raw!r}", cid)


def _active(data: dict, cid: Optional[str] = None) -> bool:
    if data.get("isActive") not in (None, ""):
        return _flag(data, "isActive", cid)
    return (data.get("status") or "ACTIVE").upper() != "INACTIVE"


def _variant_mode(data: dict, cid: str) -> VariantMode:
    mode = (data.get("variantMode") or "ALL_VARIANTS").upper()
    if mode == "ALL_VARIANTS":
        return ALL_VARIANTS
    if mode == "SPECIFIC_VARIANTS":
        ids = frozenset(str(v) for v in (data.get("variantIds") or []) if v)
        if not ids:
            raise ConfigurationError("SPECIFIC_VARIANTS without variantIds", cid)
        return SpecificVariants(ids)
    raise ConfigurationError(f"unknown variantMode {mode!r}", cid)


def _check_mode(catalog: Optional[CatalogLookup], product_id: str, mode: VariantMode, cid: str):
    if catalog is None:
        return
    ids = mode.variant_ids if isinstance(mode, SpecificVariants) else ()
    check_variants(catalog, product_id, ids, cid)


# ---------- conditions / actions ----------

def parse_condition(data: dict, cid: str, catalog: Optional[CatalogLookup] = None):
    ctype = (data.get("type") or "").upper()
    if ctype == "MIN_AMOUNT":
        value = _money(data, "value", cid)
        if value is None:
            raise ConfigurationError("MIN_AMOUNT needs a value", cid)
        return MinAmount(value)
    if ctype == "MIN_QUANTITY":
        return MinQuantity(_int(data, "value", cid))
    if ctype == "SPECIFIC_PRODUCT":
        ids = [str(p) for p in (data.get("productIds") or []) if p]
        if data.get("productId"):
            ids = [str(data["productId"])]
        if len(ids) != 1:
            raise ConfigurationError("SPECIFIC_PRODUCT must name exactly one productId", cid)
        mode = _variant_mode(data, cid)
        _check_mode(catalog, ids[0], mode, cid)
        return SpecificProduct(ids[0], mode)
    raise ConfigurationError(f"unsupported condition type {ctype!r}", cid)


def _bogo(data: dict, cid: str) -> Bogo:
    buy = _int(data, "buyQuantity", cid, 1)
    get = _int(data, "getQuantity", cid, 1)
    # the admin form only collects `value`, the percentage off the free units
    name = "getDiscount" if data.get("getDiscount") not in (None, "") else "value"
    pct = _money(data, name, cid, Decimal("100"))
    if buy < 1 or get < 1:
        raise ConfigurationError("BOGO needs buyQuantity and getQuantity >= 1", cid)
    if pct <= 0 or pct > 100:
        raise ConfigurationError(f"BOGO {name} must be in (0, 100]", cid)
    return Bogo(buy, get, pct)


def parse_action(data: dict, cid: str):
    atype = (data.get("type") or "").upper()
    if atype == "PERCENTAGE_OFF":
        value = _money(data, "value", cid, Decimal("0"))
        if value <= 0 or value > 100:
            raise ConfigurationError("PERCENTAGE_OFF value must be in (0, 100]", cid)
        cap = _money(data, "maxDiscount", cid)
        # the admin form stores 0 for "no cap"
        return PercentageOff(value, cap if cap else None)
    if atype == "FIXED_OFF":
        value = _money(data, "value", cid, Decimal("0"))
        if value <= 0:
            raise ConfigurationError("FIXED_OFF value must be > 0", cid)
        return FixedOff(value)
    if atype == "FREE_SHIPPING":
        return FreeShipping()
    if atype == "BOGO":
        return _bogo(data, cid)
    raise ConfigurationError(f"unsupported action type {atype!r}", cid)


def _targeting(data: dict, cid: str, catalog: Optional[CatalogLookup] = None):
    """
    applicableProducts (ids, every variant) and applicableProductVariants
    ({productId, variantMode, variantIds}) become SpecificProduct targets;
    excludedProducts always wins over them.
    """
    targets = []
    for pid in data.get("applicableProducts") or []:
        if pid:
            _check_mode(catalog, str(pid), ALL_VARIANTS, cid)
            targets.append(SpecificProduct(str(pid)))
    for raw in data.get("applicableProductVariants") or []:
        pid = raw.get("productId")
        if not pid:
            raise ConfigurationError("applicableProductVariants entry without productId", cid)
        mode = _variant_mode(raw, cid)
        _check_mode(catalog, str(pid), mode, cid)
        targets.append(SpecificProduct(str(pid), mode))
    excluded = frozenset(str(p) for p in (data.get("excludedProducts") or []) if p)
    return tuple(targets), excluded


# ---------- constructs ----------

def _require_id(data: dict, what: str) -> str:
    cid = data.get("id")
    if not cid:
        raise ConfigurationError(f"{what} without id")
    return str(cid)


def load_promotion(data: dict, catalog: Optional[CatalogLookup] = None) -> Promotion:
    cid = _require_id(data, "promotion")
    start, end = _window(data, cid)
    conditions = tuple(parse_condition(c, cid, catalog) for c in (data.get("conditions") or []))
    actions = tuple(parse_action(a, cid) for a in (data.get("actions") or []))
    if not actions:
        raise ConfigurationError("promotion has no actions", cid)
    applicable, excluded = _targeting(data, cid, catalog)
    return Promotion(
        id=cid,
        name=data.get("name") or "",
        type=(data.get("type") or "").upper(),
        conditions=conditions,
        actions=actions,
        start_date=start,
        end_date=end,
        is_active=_active(data, cid),
        stackable=_flag(data, "stackable", cid),
        priority=_priority(data, cid),
        usage_limit=_int(data, "usageLimit", cid),
        per_user_limit=_int(data, "perUserLimit", cid),
        usage_count=_int(data, "usageCount", cid),
        applicable_products=applicable,
        excluded_products=excluded,
    )


def load_coupon(data: dict, catalog: Optional[CatalogLookup] = None) -> Coupon:
    cid = _require_id(data, "coupon")
    code = normalize_code(data.get("code"))
    if not code:
        raise ConfigurationError("coupon code is required", cid)
    try:
        dtype = CouponDiscountType((data.get("discountType") or "").upper())
    except ValueError:
        raise ConfigurationError(f"unsupported discountType {data.get('discountType')!r}", cid)
    value = _money(data, "discountValue", cid, Decimal("0"))
    if dtype is CouponDiscountType.PERCENTAGE and not (0 < value <= 100):
        raise ConfigurationError("percentage coupon value must be in (0, 100]", cid)
    if dtype is CouponDiscountType.FIXED and value <= 0:
        raise ConfigurationError("fixed coupon value must be > 0", cid)
    start, end = _window(data, cid)
    cap = _money(data, "maxDiscount", cid)
    applicable, excluded = _targeting(data, cid, catalog)
    return Coupon(
        id=cid,
        code=code,
        discount_type=dtype,
        discount_value=value,
        max_discount=cap if cap else None,
        min_order_amount=_money(data, "minOrderAmount", cid, Decimal("0")),
        min_quantity=_int(data, "minQuantity", cid),
        usage_limit=_int(data, "usageLimit", cid),
        per_user_limit=_int(data, "perUserLimit", cid),
        usage_count=_int(data, "usageCount", cid),
        first_order_only=_flag(data, "firstOrderOnly", cid),
        is_active=_active(data, cid),
        start_date=start,
        end_date=end,
        restricted_to_users=frozenset(str(u) for u in (data.get("restrictedToUsers") or [])),
        applicable_products=applicable,
        excluded_products=excluded,
        exclusive=_flag(data, "exclusive", cid),
    )


def load_combo(data: dict, catalog: Optional[CatalogLookup] = None) -> Combo:
    cid = _require_id(data, "combo")
    try:
        ctype = ComboType((data.get("type") or "BUNDLE").upper())
    except ValueError:
        raise ConfigurationError(f"unsupported combo type {data.get('type')!r}", cid)

    items = []
    for raw in data.get("items") or []:
        pid = raw.get("productId")
        if not pid:
            raise ConfigurationError("combo item without productId", cid)
        qty = _int(raw, "quantity", cid, 1)
        if qty < 1:
            raise ConfigurationError(f"combo item {pid} needs quantity >= 1", cid)
        mode = _variant_mode(raw, cid)
        _check_mode(catalog, str(pid), mode, cid)
        items.append(ComboItem(str(pid), qty, mode))
    if not items:
        raise ConfigurationError("combo has no items", cid)

    original = _money(data, "originalPrice", cid, Decimal("0"))
    price = _money(data, "comboPrice", cid)
    if ctype is not ComboType.BOGO:
        if price is None:
            raise ConfigurationError("comboPrice is required", cid)
        if price > original:
            raise ConfigurationError("comboPrice exceeds originalPrice", cid)
    price = price if price is not None else original
    savings = round_money(original - price)
    declared = _money(data, "savings", cid)
    if declared is not None and abs(declared - savings) > MONEY:
        raise ConfigurationError(f"savings {declared} != originalPrice - comboPrice ({savings})", cid)

    bogo = _bogo(data, cid) if ctype is ComboType.BOGO else None
    start, end = _window(data, cid)
    return Combo(
        id=cid,
        name=data.get("name") or "",
        items=tuple(items),
        original_price=original,
        combo_price=price,
        savings=savings,
        type=ctype,
        status="ACTIVE" if _active(data, cid) else "INACTIVE",
        start_date=start,
        end_date=end,
        buy_quantity=bogo.buy_quantity if bogo else 0,
        get_quantity=bogo.get_quantity if bogo else 0,
        get_discount=bogo.get_discount if bogo else Decimal("100"),
    )


# ---------- batches ----------

def _load_many(rows: Sequence[dict], loader: Callable[[dict], T], what: str) -> List[T]:
    out = []
    for row in rows or []:
        if row.get("isDeleted"):
            continue
        try:
            out.append(loader(row))
        except ConfigurationError as e:
            logger.warning("skipping %s: %s", what, e)
    return out


def load_promotions(rows, catalog: Optional[CatalogLookup] = None) -> List[Promotion]:
    return _load_many(rows, lambda r: load_promotion(r, catalog), "promotion")


def load_combos(rows, catalog: Optional[CatalogLookup] = None) -> List[Combo]:
    return _load_many(rows, lambda r: load_combo(r, catalog), "combo")


def load_coupons(rows, catalog: Optional[CatalogLookup] = None) -> List[Coupon]:
    return _load_many(rows, lambda r: load_coupon(r, catalog), "coupon")


@dataclass
class RuleSet:
    promotions: List[Promotion] = field(default_factory=list)
    combos: List[Combo] = field(default_factory=list)
    coupons: Dict[str, Coupon] = field(default_factory=dict)

    def coupon(self, code: Optional[str]) -> Optional[Coupon]:
        if not code:
            return None
        return self.coupons.get(normalize_code(code))


def load_rules(doc: dict, catalog: Optional[CatalogLookup] = None) -> RuleSet:
    """Load a {"promotions": [...], "combos": [...], "coupons": [...]} export."""
    return RuleSet(
        promotions=load_promotions(doc.get("promotions") or [], catalog),
        combos=load_combos(doc.get("combos") or [], catalog),
        coupons={c.code: c for c in load_coupons(doc.get("coupons") or [], catalog)},
    )
