# Overview: Read-only product lookups used by cart, coupons and inventory.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ProductUnavailable
from ..models import Product
from .tenant_service import scoped_query


@dataclass(frozen=True)
class CatalogProduct:
    id: int
    title: str
    price_minor: int
    currency: str
    category_id: int | None


def _snapshot(product: Product) -> CatalogProduct:
    return CatalogProduct(
        id=product.id,
        title=product.title,
        price_minor=product.price_minor,
        currency=product.currency,
        category_id=product.category_id,
    )


def get_active_product(tenant_id: int, product_id: int) -> CatalogProduct:
    """
    Active product of this tenant.

    Raises ProductUnavailable for unknown, inactive or other-tenant products;
    the three cases are indistinguishable to the caller.
    """
    product = (
        scoped_query(Product, tenant_id)
        .filter(Product.id == product_id, Product.is_active.is_(True))
        .first()
    )
    if product is None:
        raise ProductUnavailable(f"Product {product_id} is not available")
    return _snapshot(product)


def get_category_map(tenant_id: int, product_ids) -> dict[int, int | None]:
    """product_id -> category_id for the given products of this tenant."""
    ids = list({int(pid) for pid in product_ids})
    if not ids:
        return {}
    rows = (
        scoped_query(Product, tenant_id)
        .with_entities(Product.id, Product.category_id)
        .filter(Product.id.in_(ids))
        .all()
    )
    return {pid: cid for pid, cid in rows}
