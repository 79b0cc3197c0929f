"""
Catalog Service: categories, products, size prices, cost history, stock.

WHY: Settlement snapshots names, prices and costs from here. Assembled
("Montado") categories price per size, so a product in one must carry a
valid price for the sizes it is sold in.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_

from ..extensions import db
from ..errors import ConflictError, InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from ..models import Category, CategorySize, Product, ProductCost, ProductSizePrice
from scoopdesk.time_utils import utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry


logger = logging.getLogger(__name__)

SALE_TYPES = ("UNIT", "WEIGHT")
CATEGORY_TYPES = ("STANDARD", "ASSEMBLED")


# =============================================================================
# CATEGORIES
# =============================================================================

def create_category(name: str, category_type: str = "STANDARD", sizes: list[dict] | None = None, description: str | None = None) -> Category:
    if not name:
        raise ValidationError("name is required")
    category_type = (category_type or "STANDARD").upper()
    if category_type not in CATEGORY_TYPES:
        raise ValidationError(f"category_type must be one of {', '.join(CATEGORY_TYPES)}")
    if db.session.query(Category).filter_by(name=name).first():
        raise ConflictError(f"Category '{name}' already exists")

    category = Category(name=name, category_type=category_type, description=description, is_active=True)
    db.session.add(category)
    db.session.flush()

    for order, size in enumerate(sizes or []):
        _add_size(category, size.get("name"), size.get("max_flavors", 1), size.get("display_order", order))

    db.session.commit()
    return category


def _add_size(category: Category, name: str | None, max_flavors: int, display_order: int = 0) -> CategorySize:
    if not category.is_assembled:
        raise InvalidStateError("Sizes are only allowed on assembled categories")
    if not name:
        raise ValidationError("size name is required")
    if not isinstance(max_flavors, int) or max_flavors < 1:
        raise ValidationError("max_flavors must be a positive integer")
    size = CategorySize(category_id=category.id, name=name, max_flavors=max_flavors, display_order=display_order)
    db.session.add(size)
    return size


def add_category_size(category_id: int, name: str, max_flavors: int) -> CategorySize:
    category = db.session.get(Category, category_id)
    if not category:
        raise NotFoundError("Category not found", {"category_id": category_id})
    size = _add_size(category, name, max_flavors, len(category.sizes))
    db.session.commit()
    return size


# =============================================================================
# PRODUCTS
# =============================================================================

def _validate_size_prices(category: Category | None, size_prices: list[dict]) -> None:
    if not category or not category.is_assembled:
        if size_prices:
            raise ValidationError("Size prices are only allowed for assembled categories")
        return
    if not size_prices:
        raise ValidationError("Assembled products require at least one size price")
    size_ids = {s.id for s in category.sizes}
    for entry in size_prices:
        if entry.get("size_id") not in size_ids:
            raise ValidationError("Size does not belong to the product's category", {"size_id": entry.get("size_id")})
        price = entry.get("price_cents")
        if not isinstance(price, int) or price <= 0:
            raise ValidationError("Size price must be a positive integer (cents)", {"size_id": entry.get("size_id")})


def create_product(data: dict) -> Product:
    """
    Create a catalog product.

    Assembled-category products must supply size_prices, each for a size
    of that category with price > 0. An initial ProductCost row is opened
    from cost_price_cents.
    """
    name = data.get("name")
    if not name:
        raise ValidationError("name is required")

    sale_type = (data.get("sale_type") or "UNIT").upper()
    if sale_type not in SALE_TYPES:
        raise ValidationError(f"sale_type must be one of {', '.join(SALE_TYPES)}")

    category = None
    if data.get("category_id") is not None:
        category = db.session.get(Category, data["category_id"])
        if not category:
            raise NotFoundError("Category not found", {"category_id": data["category_id"]})

    size_prices = data.get("size_prices") or []
    _validate_size_prices(category, size_prices)

    sale_price = data.get("sale_price_cents", 0)
    if not isinstance(sale_price, int) or sale_price < 0:
        raise ValidationError("sale_price_cents must be a non-negative integer")
    if (not category or not category.is_assembled) and sale_price <= 0:
        raise ValidationError("sale_price_cents must be positive")

    cost_price = data.get("cost_price_cents", 0) or 0
    if not isinstance(cost_price, int) or cost_price < 0:
        raise ValidationError("cost_price_cents must be a non-negative integer")

    code = data.get("code")
    if code and db.session.query(Product).filter_by(code=code).first():
        raise ConflictError(f"Product code '{code}' already exists")

    product = Product(
        name=name,
        code=code,
        category_id=category.id if category else None,
        sale_type=sale_type,
        sale_price_cents=sale_price,
        cost_price_cents=cost_price,
        track_stock=bool(data.get("track_stock", False)),
        current_stock=Decimal(str(data.get("current_stock", 0))),
        min_stock=Decimal(str(data["min_stock"])) if data.get("min_stock") is not None else None,
        eligible_for_loyalty=bool(data.get("eligible_for_loyalty", True)),
        earns_cashback=bool(data.get("earns_cashback", True)),
        is_active=bool(data.get("is_active", True)),
    )
    if product.current_stock < 0:
        raise ValidationError("current_stock cannot be negative")
    db.session.add(product)
    db.session.flush()

    for entry in size_prices:
        db.session.add(ProductSizePrice(product_id=product.id, size_id=entry["size_id"], price_cents=entry["price_cents"]))
    if cost_price:
        db.session.add(ProductCost(product_id=product.id, cost_cents=cost_price, valid_from=utcnow()))

    db.session.commit()
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found", {"product_id": product_id})
    return product


def list_products(active_only: bool = True, category_id: int | None = None) -> list[Product]:
    query = db.session.query(Product)
    if active_only:
        query = query.filter_by(is_active=True)
    if category_id is not None:
        query = query.filter_by(category_id=category_id)
    return query.order_by(Product.name).all()


def set_size_price(product_id: int, size_id: int, price_cents: int) -> ProductSizePrice:
    product = get_product(product_id)
    _validate_size_prices(product.category, [{"size_id": size_id, "price_cents": price_cents}])
    entry = db.session.query(ProductSizePrice).filter_by(product_id=product_id, size_id=size_id).first()
    if entry:
        entry.price_cents = price_cents
    else:
        entry = ProductSizePrice(product_id=product_id, size_id=size_id, price_cents=price_cents)
        db.session.add(entry)
    db.session.commit()
    return entry


def deactivate_product(product_id: int) -> Product:
    product = get_product(product_id)
    product.is_active = False
    db.session.commit()
    return product


# =============================================================================
# COST HISTORY
# =============================================================================

def add_product_cost(product_id: int, cost_cents: int, *, valid_from: datetime | None = None, notes: str | None = None) -> ProductCost:
    """
    Open a new cost range and close the currently open one.

    Product.cost_price_cents mirrors the newest cost.
    """
    if not isinstance(cost_cents, int) or cost_cents < 0:
        raise ValidationError("cost_cents must be a non-negative integer")
    product = get_product(product_id)
    start = valid_from or utcnow()

    open_costs = db.session.query(ProductCost).filter_by(product_id=product_id, valid_to=None).all()
    for row in open_costs:
        if row.valid_from < start:
            row.valid_to = start

    cost = ProductCost(product_id=product_id, cost_cents=cost_cents, valid_from=start, notes=notes)
    db.session.add(cost)
    product.cost_price_cents = cost_cents
    db.session.commit()
    return cost


def current_cost_cents(product: Product, at: datetime | None = None) -> int:
    """Newest cost row valid at `at`, falling back to Product.cost_price_cents."""
    at = at or utcnow()
    row = (
        db.session.query(ProductCost)
        .filter(
            ProductCost.product_id == product.id,
            ProductCost.valid_from <= at,
            or_(ProductCost.valid_to.is_(None), ProductCost.valid_to > at),
        )
        .order_by(ProductCost.valid_from.desc(), ProductCost.id.desc())
        .first()
    )
    if row:
        return row.cost_cents
    return product.cost_price_cents or 0


# =============================================================================
# STOCK
# =============================================================================

def adjust_stock(product_id: int, delta, reason: str) -> Product:
    """Manual stock correction (receiving, breakage). Never below zero."""
    delta = Decimal(str(delta))
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        begin_write()
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise NotFoundError("Product not found", {"product_id": product_id})
        if not product.track_stock:
            raise InvalidStateError("Product does not track stock", {"product_id": product_id})
        new_stock = Decimal(product.current_stock) + delta
        if new_stock < 0:
            raise InsufficientStockError(
                "Stock cannot go below zero",
                {"product_id": product_id, "available": str(product.current_stock)},
            )
        product.current_stock = new_stock
        db.session.commit()
        logger.info("Stock adjusted for product %s by %s (%s)", product_id, delta, reason)
        return product

    return run_with_retry(_op)
