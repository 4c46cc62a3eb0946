from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


STOCK_STATUSES = ("in_stock", "low_stock", "out_of_stock", "overstock")

MOVEMENT_KINDS = ("in", "out", "adjustment", "transfer_in", "transfer_out")


class StockLevel(db.Model):
    """
    Current quantity state for one (product, store) pair.

    WHY: The movement ledger is the history; StockLevel is the materialized
    "now" that sales debit against. The two are written together in the same
    transaction by the stock ledger service and nowhere else.

    DERIVED FIELDS (recomputed after every write):
    - available_quantity = quantity - reserved_quantity
    - total_value_cents  = quantity * average_cost_cents
    - status             = out_of_stock / low_stock / overstock / in_stock

    Created lazily on the first movement for a (product, store) pair.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("org_id", "product_id", "store_id", name="uq_stock_levels_org_product_store"),
        db.Index("ix_stock_levels_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    available_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Thresholds
    min_quantity = db.Column(db.Integer, nullable=False, default=0)
    max_quantity = db.Column(db.Integer, nullable=True)
    reorder_point = db.Column(db.Integer, nullable=True)

    # Weighted average cost valuation
    average_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_value_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="out_of_stock")

    last_movement_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    store = db.relationship("Store")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockLevel product_id={self.product_id} store_id={self.store_id} "
            f"quantity={self.quantity} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "store_id": self.store_id,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "min_quantity": self.min_quantity,
            "max_quantity": self.max_quantity,
            "reorder_point": self.reorder_point,
            "average_cost_cents": self.average_cost_cents,
            "total_value_cents": self.total_value_cents,
            "status": self.status,
            "last_movement_at": to_utc_z(self.last_movement_at) if self.last_movement_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Immutable, append-only ledger entry for one quantity change.

    previous_quantity / new_quantity are captured at write time and are
    never recomputed. new_quantity == previous_quantity + quantity_delta.

    reference_type / reference_id link back to the originating document
    (e.g. "sale" + invoice number, "return" + refund number).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_org_product_store", "org_id", "product_id", "store_id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        db.CheckConstraint(
            "new_quantity = previous_quantity + quantity_delta",
            name="ck_stock_movements_delta",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)  # in, out, adjustment, transfer_in, transfer_out

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "product_id": self.product_id,
            "store_id": self.store_id,
            "kind": self.kind,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reason": self.reason,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
