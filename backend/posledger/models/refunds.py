from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


class Refund(db.Model):
    """
    Immutable refund record for a sale.

    A sale is refunded at most once; the affected items and quantities are
    recorded as RefundLine rows linked to the stock movements that put the
    quantity back.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("org_id", "refund_number", name="uq_refunds_org_number"),
        db.UniqueConstraint("sale_id", name="uq_refunds_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # Human-readable document number (e.g., "RF-000007")
    refund_number = db.Column(db.String(64), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    is_full = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    sale = db.relationship("Sale", backref=db.backref("refunds", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sale_id": self.sale_id,
            "refund_number": self.refund_number,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "is_full": self.is_full,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class RefundLine(db.Model):
    """Item returned by a refund."""
    __tablename__ = "refund_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    refund = db.relationship("Refund", backref=db.backref("lines", lazy=True, order_by="RefundLine.id"))
    sale_line = db.relationship("SaleLine")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_id": self.refund_id,
            "sale_line_id": self.sale_line_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "stock_movement_id": self.stock_movement_id,
        }
