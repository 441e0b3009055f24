# pricing/services/catalog.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from ..errors import ConfigurationError
from ..model.order import OrderLine


@dataclass(frozen=True)
class CatalogEntry:
    product_id: str
    variant_id: Optional[str]
    sizes: Tuple[str, ...] = ()


class CatalogLookup:
    """What the engine needs from the product catalog. Implemented by the caller."""

    def lookup(self, product_id: str, variant_id: Optional[str] = None) -> Optional[CatalogEntry]:
        raise NotImplementedError

    def has_product(self, product_id: str) -> bool:
        return self.lookup(product_id) is not None


class StaticCatalog(CatalogLookup):
    """Catalog held in memory, e.g. prefetched for one checkout or loaded from a JSON export."""

    def __init__(self, entries: Iterable[CatalogEntry] = ()):
        self._entries: Dict[Tuple[str, Optional[str]], CatalogEntry] = {}
        self._products = set()
        for e in entries:
            self._entries[(e.product_id, e.variant_id)] = e
            self._products.add(e.product_id)

    @classmethod
    def from_api(cls, rows: Sequence[dict]) -> "StaticCatalog":
        return cls(
            CatalogEntry(str(r["productId"]), r.get("variantId"), tuple(r.get("sizes") or ()))
            for r in rows
        )

    def lookup(self, product_id, variant_id=None):
        hit = self._entries.get((product_id, variant_id))
        if hit is None and variant_id is None and product_id in self._products:
            return CatalogEntry(product_id, None)
        return hit

    def has_product(self, product_id):
        return product_id in self._products


def check_variants(catalog: CatalogLookup, product_id: str, variant_ids: Iterable[str], construct_id: str) -> None:
    if not catalog.has_product(product_id):
        raise ConfigurationError(f"unknown product {product_id}", construct_id)
    for vid in variant_ids:
        if catalog.lookup(product_id, vid) is None:
            raise ConfigurationError(f"unknown variant {vid} of product {product_id}", construct_id)


def validate_order_lines(catalog: CatalogLookup, lines: Sequence[OrderLine]) -> list[str]:
    """Problems with the order lines (unknown product, variant or size); empty when all resolve."""
    problems = []
    for line in lines:
        entry = catalog.lookup(line.product_id, line.variant_id)
        if entry is None:
            problems.append(f"unknown item {line.product_id}/{line.variant_id}")
        elif line.size and entry.sizes and line.size not in entry.sizes:
            problems.append(f"size {line.size} not offered for {line.product_id}/{line.variant_id}")
    return problems
