# Overview: Catalog collaborator contracts (branch/product lookups, price write-back, markup).

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Branch, Product
from ..errors import ValidationError


DEFAULT_MARKUP_PERCENT = Decimal("30")


def _is_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def branch_exists_and_active(branch_id: int) -> bool:
    if not _is_id(branch_id):
        return False
    branch = db.session.get(Branch, branch_id)
    return branch is not None and branch.is_active


def product_exists_and_active(product_id: int) -> bool:
    if not _is_id(product_id):
        return False
    product = db.session.get(Product, product_id)
    return product is not None and product.is_active


def set_prices(product_id: int, buying_price: Decimal, selling_price: Decimal) -> Product:
    """
    Write approved purchase prices to the product master.

    Does not commit; runs inside the caller's unit of work.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError(f"Product {product_id} not found")
    product.buying_price = buying_price
    product.selling_price = selling_price
    db.session.flush()
    return product


def get_default_markup_percent() -> Decimal:
    value = current_app.config.get("DEFAULT_MARKUP_PERCENT", DEFAULT_MARKUP_PERCENT)
    return Decimal(str(value))
