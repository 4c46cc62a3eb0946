# Overview: Service-layer operations for the stock ledger; the only writer of StockLevel quantities and StockMovement rows.

"""
Stock Ledger Invariants (authoritative)

- StockLevel.quantity changes ONLY through debit/credit/adjust/transfer here.
- Every quantity change appends exactly one StockMovement in the same
  transaction, carrying the previous/new quantity pair that was written:
      new_quantity == previous_quantity + quantity_delta
- After every write:
      available_quantity == quantity - reserved_quantity
      total_value_cents  == quantity * average_cost_cents
      status derived by derive_stock_status()
- When the tenant disallows negative stock, a write that would take
  quantity below zero fails with InsufficientStock and writes nothing.
- Weighted average cost (WAC) changes only on credits that carry a unit
  cost: (prev_qty * avg + qty * cost) / new_qty, nearest cent (half-up).

Unit of work:
- debit/credit/adjust run inside the caller's transaction
  and never commit (the sale and refund pipelines compose them).
- adjust_stock/receive_stock/transfer_stock/update_stock_thresholds are the
  public entry points: they open a write transaction, retry on store
  conflicts and commit.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InsufficientStock, ValidationFailed
from ..models import Product, StockLevel, StockMovement
from ..patching import Maybe, UNSET, apply_patch, supplied_fields
from posledger.time_utils import utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .tenant_service import get_tenant_settings, require_product_in_org, require_store_in_org


KIND_IN = "in"
KIND_OUT = "out"
KIND_ADJUSTMENT = "adjustment"
KIND_TRANSFER_IN = "transfer_in"
KIND_TRANSFER_OUT = "transfer_out"

STATUS_IN_STOCK = "in_stock"
STATUS_LOW_STOCK = "low_stock"
STATUS_OUT_OF_STOCK = "out_of_stock"
STATUS_OVERSTOCK = "overstock"


@dataclass(frozen=True)
class StockChange:
    previous_quantity: int
    new_quantity: int
    level: StockLevel
    movement: StockMovement

    def to_dict(self) -> dict:
        return {
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "stock_level": self.level.to_dict(),
            "movement": self.movement.to_dict(),
        }


@dataclass
class StockLevelPatch:
    min_quantity: Maybe[int] = UNSET
    max_quantity: Maybe[int | None] = UNSET
    reorder_point: Maybe[int | None] = UNSET


def derive_stock_status(quantity: int, min_quantity: int, max_quantity: int | None) -> str:
    if quantity <= 0:
        return STATUS_OUT_OF_STOCK
    if quantity <= min_quantity:
        return STATUS_LOW_STOCK
    if max_quantity is not None and quantity > max_quantity:
        return STATUS_OVERSTOCK
    return STATUS_IN_STOCK


def refresh_derived(level: StockLevel) -> None:
    level.available_quantity = level.quantity - level.reserved_quantity
    level.total_value_cents = level.quantity * level.average_cost_cents
    level.status = derive_stock_status(level.quantity, level.min_quantity, level.max_quantity)


def weighted_average_cost(
    previous_quantity: int,
    previous_average_cents: int,
    quantity: int,
    unit_cost_cents: int,
) -> int:
    """WAC after receiving quantity at unit_cost (half-up to the cent)."""
    if previous_quantity <= 0:
        return unit_cost_cents
    units = previous_quantity + quantity
    cost = previous_quantity * previous_average_cents + quantity * unit_cost_cents
    return (cost + (units // 2)) // units


def _find_level(org_id: int, product_id: int, store_id: int, *, lock: bool = False) -> StockLevel | None:
    query = db.session.query(StockLevel).filter_by(org_id=org_id, product_id=product_id, store_id=store_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_or_create_level(org_id: int, product: Product, store_id: int) -> StockLevel:
    """
    Load the (product, store) level under lock, creating a zero-quantity
    level on first use. Thresholds and cost are seeded from the catalog.
    """
    level = _find_level(org_id, product.id, store_id, lock=True)
    if level is not None:
        return level

    level = StockLevel(
        org_id=org_id,
        product_id=product.id,
        store_id=store_id,
        quantity=0,
        reserved_quantity=0,
        min_quantity=product.min_quantity or 0,
        average_cost_cents=product.cost_cents or 0,
    )
    refresh_derived(level)
    try:
        with db.session.begin_nested():
            db.session.add(level)
    except IntegrityError:
        # Created concurrently; use the winner's row
        level = _find_level(org_id, product.id, store_id, lock=True)
        if level is None:
            raise
    return level


def _apply_movement(
    level: StockLevel,
    *,
    kind: str,
    delta: int,
    allow_negative: bool,
    reference_type: str | None,
    reference_id: str | None,
    reason: str | None,
    actor_id: int | None,
    unit_cost_cents: int | None = None,
) -> StockChange:
    previous = level.quantity
    new = previous + delta

    if new < 0 and delta < 0 and not allow_negative:
        current_app.logger.warning(
            "Insufficient stock: product_id=%s store_id=%s on_hand=%s requested=%s",
            level.product_id, level.store_id, previous, -delta,
        )
        raise InsufficientStock(
            "Insufficient stock",
            details={
                "product_id": level.product_id,
                "store_id": level.store_id,
                "on_hand": previous,
                "requested_quantity": -delta,
            },
        )

    now = utcnow()
    level.quantity = new
    level.last_movement_at = now
    refresh_derived(level)

    movement_cost = unit_cost_cents if unit_cost_cents is not None else level.average_cost_cents
    movement = StockMovement(
        org_id=level.org_id,
        product_id=level.product_id,
        store_id=level.store_id,
        kind=kind,
        quantity_delta=delta,
        previous_quantity=previous,
        new_quantity=new,
        reference_type=reference_type,
        reference_id=reference_id,
        reason=reason,
        unit_cost_cents=movement_cost,
        total_cost_cents=movement_cost * abs(delta),
        actor_user_id=actor_id,
        occurred_at=now,
    )
    db.session.add(movement)
    db.session.flush()
    return StockChange(previous_quantity=previous, new_quantity=new, level=level, movement=movement)


def debit(
    *,
    org_id: int,
    product: Product,
    store_id: int,
    quantity: int,
    allow_negative: bool,
    reference_type: str | None = None,
    reference_id: str | None = None,
    actor_id: int | None = None,
    reason: str | None = None,
    kind: str = KIND_OUT,
) -> StockChange:
    """Remove quantity from stock. Joins the caller's transaction."""
    if quantity <= 0:
        raise ValidationFailed("Debit quantity must be positive", details={"quantity": quantity})
    level = get_or_create_level(org_id, product, store_id)
    return _apply_movement(
        level,
        kind=kind,
        delta=-quantity,
        allow_negative=allow_negative,
        reference_type=reference_type,
        reference_id=reference_id,
        reason=reason,
        actor_id=actor_id,
    )


def credit(
    *,
    org_id: int,
    product: Product,
    store_id: int,
    quantity: int,
    reference_type: str | None = None,
    reference_id: str | None = None,
    actor_id: int | None = None,
    reason: str | None = None,
    unit_cost_cents: int | None = None,
    kind: str = KIND_IN,
) -> StockChange:
    """
    Put quantity into stock. Joins the caller's transaction.

    A credit with unit_cost_cents re-weights the average cost (receipts at
    invoice cost, returns at the cost recorded on the sale line); without
    one (corrections) the average cost is left as is.
    """
    if quantity <= 0:
        raise ValidationFailed("Credit quantity must be positive", details={"quantity": quantity})
    if unit_cost_cents is not None and unit_cost_cents < 0:
        raise ValidationFailed("unit_cost_cents must be >= 0")

    level = get_or_create_level(org_id, product, store_id)
    if unit_cost_cents is not None:
        level.average_cost_cents = weighted_average_cost(
            level.quantity, level.average_cost_cents, quantity, unit_cost_cents
        )
    return _apply_movement(
        level,
        kind=kind,
        delta=quantity,
        allow_negative=True,
        reference_type=reference_type,
        reference_id=reference_id,
        reason=reason,
        actor_id=actor_id,
        unit_cost_cents=unit_cost_cents,
    )


def adjust(
    *,
    org_id: int,
    product: Product,
    store_id: int,
    delta: int,
    reason: str,
    allow_negative: bool,
    actor_id: int | None = None,
) -> StockChange:
    """Signed manual correction (counts, damage, shrinkage). Joins the caller's transaction."""
    if delta == 0:
        raise ValidationFailed("Adjustment delta must be non-zero")
    if not reason or not reason.strip():
        raise ValidationFailed("Adjustment reason is required")
    level = get_or_create_level(org_id, product, store_id)
    return _apply_movement(
        level,
        kind=KIND_ADJUSTMENT,
        delta=delta,
        allow_negative=allow_negative,
        reference_type="adjustment",
        reference_id=None,
        reason=reason.strip(),
        actor_id=actor_id,
    )


# =============================================================================
# PUBLIC ENTRY POINTS (own unit of work)
# =============================================================================

def adjust_stock(
    *,
    org_id: int,
    product_id: int,
    store_id: int,
    delta: int,
    reason: str,
    actor_id: int | None = None,
) -> StockChange:
    """
    AdjustStock: apply a signed correction and commit.

    Raises:
        ProductNotFound: product missing or owned by another tenant
        InsufficientStock: result below zero with negative stock disabled
    """
    def _op():
        begin_write()
        settings = get_tenant_settings(org_id)
        product = require_product_in_org(product_id, org_id, hide_foreign=True)
        require_store_in_org(store_id, org_id)

        change = adjust(
            org_id=org_id,
            product=product,
            store_id=store_id,
            delta=delta,
            reason=reason,
            allow_negative=settings.allow_negative_stock,
            actor_id=actor_id,
        )
        db.session.commit()
        current_app.logger.info(
            "Stock adjusted: product_id=%s store_id=%s %s -> %s (%s)",
            product_id, store_id, change.previous_quantity, change.new_quantity, reason,
        )
        return change

    return run_with_retry(_op)


def receive_stock(
    *,
    org_id: int,
    product_id: int,
    store_id: int,
    quantity: int,
    unit_cost_cents: int | None = None,
    reference_type: str | None = "receipt",
    reference_id: str | None = None,
    reason: str | None = None,
    actor_id: int | None = None,
) -> StockChange:
    """Receive goods into a store (Credit with optional unit cost) and commit."""
    def _op():
        begin_write()
        get_tenant_settings(org_id)
        product = require_product_in_org(product_id, org_id, hide_foreign=True)
        require_store_in_org(store_id, org_id)

        change = credit(
            org_id=org_id,
            product=product,
            store_id=store_id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            reference_type=reference_type,
            reference_id=reference_id,
            reason=reason,
            actor_id=actor_id,
        )
        db.session.commit()
        current_app.logger.info(
            "Stock received: product_id=%s store_id=%s qty=%s unit_cost_cents=%s",
            product_id, store_id, quantity, unit_cost_cents,
        )
        return change

    return run_with_retry(_op)


def transfer_stock(
    *,
    org_id: int,
    product_id: int,
    from_store_id: int,
    to_store_id: int,
    quantity: int,
    actor_id: int | None = None,
    reason: str | None = None,
) -> tuple[StockChange, StockChange]:
    """
    Move quantity between two stores of the same tenant in one transaction.

    The destination receives the goods at the source's average cost.
    Returns (outbound change, inbound change).
    """
    if from_store_id == to_store_id:
        raise ValidationFailed("Source and destination store must differ")
    if quantity <= 0:
        raise ValidationFailed("Transfer quantity must be positive")

    def _op():
        begin_write()
        settings = get_tenant_settings(org_id)
        product = require_product_in_org(product_id, org_id, hide_foreign=True)
        require_store_in_org(from_store_id, org_id)
        require_store_in_org(to_store_id, org_id)

        reference_id = f"{from_store_id}->{to_store_id}"
        outbound = debit(
            org_id=org_id,
            product=product,
            store_id=from_store_id,
            quantity=quantity,
            allow_negative=settings.allow_negative_stock,
            reference_type="transfer",
            reference_id=reference_id,
            actor_id=actor_id,
            reason=reason,
            kind=KIND_TRANSFER_OUT,
        )
        inbound = credit(
            org_id=org_id,
            product=product,
            store_id=to_store_id,
            quantity=quantity,
            unit_cost_cents=outbound.level.average_cost_cents,
            reference_type="transfer",
            reference_id=reference_id,
            actor_id=actor_id,
            reason=reason,
            kind=KIND_TRANSFER_IN,
        )
        db.session.commit()
        current_app.logger.info(
            "Stock transferred: product_id=%s qty=%s from store %s to store %s",
            product_id, quantity, from_store_id, to_store_id,
        )
        return outbound, inbound

    return run_with_retry(_op)


def update_stock_thresholds(
    *,
    org_id: int,
    product_id: int,
    store_id: int,
    patch: StockLevelPatch,
    actor_id: int | None = None,
) -> StockLevel:
    """
    Change min/max/reorder thresholds. Re-derives status; quantity is not
    touched and no movement is written.
    """
    values = supplied_fields(patch)
    for name, value in values.items():
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationFailed(f"{name} must be a non-negative integer", details={"field": name})

    def _op():
        begin_write()
        product = require_product_in_org(product_id, org_id, hide_foreign=True)
        require_store_in_org(store_id, org_id)
        level = get_or_create_level(org_id, product, store_id)

        changes = apply_patch(level, patch, nullable={"max_quantity", "reorder_point"})
        if level.max_quantity is not None and level.max_quantity < level.min_quantity:
            raise ValidationFailed(
                "max_quantity must be >= min_quantity",
                details={"min_quantity": level.min_quantity, "max_quantity": level.max_quantity},
            )
        refresh_derived(level)
        db.session.commit()
        if changes:
            current_app.logger.info(
                "Stock thresholds updated: product_id=%s store_id=%s by user %s: %s",
                product_id, store_id, actor_id, sorted(changes),
            )
        return level

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_stock_level(*, org_id: int, product_id: int, store_id: int) -> StockLevel | None:
    return _find_level(org_id, product_id, store_id)


def list_stock_levels(
    *,
    org_id: int,
    product_id: int | None = None,
    store_id: int | None = None,
    status: str | None = None,
) -> list[StockLevel]:
    query = db.session.query(StockLevel).filter_by(org_id=org_id)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    if status is not None:
        query = query.filter_by(status=status)
    return query.order_by(StockLevel.store_id.asc(), StockLevel.product_id.asc()).all()


def list_movements(
    *,
    org_id: int,
    product_id: int | None = None,
    store_id: int | None = None,
    kind: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[StockMovement]:
    """Newest first."""
    query = db.session.query(StockMovement).filter_by(org_id=org_id)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    if kind is not None:
        query = query.filter_by(kind=kind)
    return (
        query.order_by(StockMovement.id.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 500)))
        .all()
    )


def verify_stock_level(level: StockLevel) -> list[str]:
    """Return a list of invariant violations for one level (empty when consistent)."""
    problems = []
    if level.available_quantity != level.quantity - level.reserved_quantity:
        problems.append("available_quantity != quantity - reserved_quantity")
    if level.total_value_cents != level.quantity * level.average_cost_cents:
        problems.append("total_value_cents != quantity * average_cost_cents")
    if level.status != derive_stock_status(level.quantity, level.min_quantity, level.max_quantity):
        problems.append(f"status {level.status!r} does not match quantity")

    latest = (
        db.session.query(StockMovement)
        .filter_by(org_id=level.org_id, product_id=level.product_id, store_id=level.store_id)
        .order_by(StockMovement.id.desc())
        .first()
    )
    if latest is not None and latest.new_quantity != level.quantity:
        problems.append(
            f"latest movement new_quantity {latest.new_quantity} != quantity {level.quantity}"
        )
    return problems
