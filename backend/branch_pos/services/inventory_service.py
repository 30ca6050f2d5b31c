# Overview: Branch inventory ledger; applies stock deltas and maintains the discrepancy flag.

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..extensions import branch_router
from ..errors import NotFoundError, NotFoundKind
from ..models import Product
from branch_pos.time_utils import utcnow

"""
Branch Inventory Invariants (authoritative)

Stock model:
- Product.stock_level is a mutable signed integer; it may go negative.
- has_inventory_discrepancy == (stock_level < 0) after every apply_delta().
  The flag is recomputed from the new stock, never set independently.

Concurrency policy (last-commit-wins):
- apply_delta() is a plain read-modify-write inside the caller's transaction.
- No row versioning, no SELECT ... FOR UPDATE, no reservations.
- Two concurrent sales may both commit against the same observed stock;
  the resulting negative stock is flagged, not prevented.
"""

logger = logging.getLogger(__name__)


def apply_delta(session: Session, product_id: int, delta: int) -> int:
    """
    Add delta to a product's stock inside the caller's transaction.

    Negative for sale creation, positive for void/restore.
    Returns the new stock level. Raises NotFoundError(PRODUCT).
    """
    product = session.get(Product, product_id)
    if product is None:
        raise NotFoundError(NotFoundKind.PRODUCT, details={"product_id": product_id})

    new_stock = (product.stock_level or 0) + int(delta)
    product.stock_level = new_stock
    product.has_inventory_discrepancy = new_stock < 0
    product.updated_at = utcnow()
    session.flush()

    if new_stock < 0:
        logger.warning("Product %s stock went negative (%s); flagged for reconciliation", product_id, new_stock)
    return new_stock


def get_stock_level(session: Session, product_id: int) -> int:
    stock = session.query(Product.stock_level).filter(Product.id == product_id).scalar()
    if stock is None:
        raise NotFoundError(NotFoundKind.PRODUCT, details={"product_id": product_id})
    return stock


def list_discrepant_products(branch_id: int) -> list[dict]:
    """Products currently flagged with negative stock, most negative first."""
    handle = branch_router.resolve(branch_id)
    with handle.session() as session:
        products = (
            session.query(Product)
            .filter(Product.has_inventory_discrepancy.is_(True))
            .order_by(Product.stock_level.asc(), Product.id.asc())
            .all()
        )
        return [p.to_dict() for p in products]
