from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z


SALE_STATUSES = (
    "draft",
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "completed",
    "cancelled",
    "refunded",
)

# "overpaid" is reserved: overpayment resolves to "paid" with change_due_cents.
PAYMENT_STATUSES = ("pending", "partial", "paid", "overpaid", "refunded")

SALE_PAYMENT_METHODS = (
    "cash",
    "credit_card",
    "debit_card",
    "bank_transfer",
    "check",
    "installment",
    "credit",
    "other",
)

# Follow-up payments cannot be booked against installment or on-account credit
ADDITIONAL_PAYMENT_METHODS = (
    "cash",
    "credit_card",
    "debit_card",
    "bank_transfer",
    "check",
    "other",
)

SALE_SOURCES = ("pos", "web", "mobile", "manual")


class Sale(db.Model):
    """
    Sale document.

    WHY: A committed sale is the anchor for stock debits, payments and
    refunds. It is never physically deleted, only marked refunded or
    cancelled.

    MONEY (all cents):
    - subtotal_cents       = sum(line.line_total_cents)
    - discount_total_cents = subtotal * discount_bps + discount_amount_cents
    - tax_cents            = (subtotal - discount_total) * tax_rate_bps
    - total_cents          = subtotal - discount_total + tax + shipping

    PAYMENT:
    - paid_cents - change_due_cents + remaining_cents == total_cents
    - remaining_cents is recomputed from paid_cents, never edited directly
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("org_id", "invoice_number", name="uq_sales_org_invoice"),
        db.Index("ix_sales_org_status_created", "org_id", "status", "created_at"),
        db.Index("ix_sales_org_customer", "org_id", "customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable invoice number (e.g., "INV-000042"), allocated once
    invoice_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    source = db.Column(db.String(16), nullable=False, default="pos")
    is_pos_sale = db.Column(db.Boolean, nullable=False, default=True)
    currency = db.Column(db.String(3), nullable=False, default="SAR")

    # Customer (optional) with contact snapshot at sale time
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    # Attribution
    created_by_user_id = db.Column(db.Integer, nullable=True)
    sales_rep_user_id = db.Column(db.Integer, nullable=True)

    # Totals
    total_items = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment tracking
    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False, default=0)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)

    # Refund
    is_refunded = db.Column(db.Boolean, nullable=False, default=False)
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} invoice={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "source": self.source,
            "is_pos_sale": self.is_pos_sale,
            "currency": self.currency,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "created_by_user_id": self.created_by_user_id,
            "sales_rep_user_id": self.sales_rep_user_id,
            "total_items": self.total_items,
            "subtotal_cents": self.subtotal_cents,
            "discount_bps": self.discount_bps,
            "discount_amount_cents": self.discount_amount_cents,
            "discount_total_cents": self.discount_total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "change_due_cents": self.change_due_cents,
            "notes": self.notes,
            "internal_notes": self.internal_notes,
            "is_refunded": self.is_refunded,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_reason": self.refund_reason,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "refunded_by_user_id": self.refunded_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
            data["refunds"] = [refund.to_dict() for refund in self.refunds]
        return data


class SaleLine(db.Model):
    """
    Individual line on a sale.

    Product name/sku/cost are snapshotted so later catalog edits do not
    rewrite history. line_total_cents is net of line discounts, before tax.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_no", name="uq_sale_lines_sale_line_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    returned_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_returned = db.Column(db.Boolean, nullable=False, default=False)

    # Movement that debited this line
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLine.line_no"),
    )
    product = db.relationship("Product")

    @property
    def returnable_quantity(self) -> int:
        return self.quantity - self.returned_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_no": self.line_no,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "unit_cost_cents": self.unit_cost_cents,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_bps": self.discount_bps,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "returned_quantity": self.returned_quantity,
            "is_returned": self.is_returned,
            "stock_movement_id": self.stock_movement_id,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Payment booked against exactly one sale.

    IMMUTABLE: Records are never updated or deleted. The sum of a sale's
    payment amounts always equals Sale.paid_cents.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_sale_created", "sale_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False, index=True)

    # Reference info (card auth code, transfer number, etc.)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    sale = db.relationship(
        "Sale",
        backref=db.backref("payments", lazy=True, order_by="Payment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
