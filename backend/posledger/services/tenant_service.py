"""
Multi-Tenant Service: Tenant Settings and Scoping Helpers

WHY: Every core operation is scoped to one organization. Stores, products,
customers and sales referenced by id from client input must be validated
against the tenant before they are used; cross-tenant access is denied.

USAGE:
    settings = get_tenant_settings(org_id)
    store = require_store_in_org(store_id, org_id)
    product = require_product_in_org(product_id, org_id)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..errors import CrossTenantAccess, ProductNotFound, ValidationFailed
from ..models import Customer, Organization, Product, Store


@dataclass(frozen=True)
class TenantSettings:
    org_id: int
    invoice_prefix: str
    default_tax_rate_bps: int
    allow_negative_stock: bool
    default_currency: str


def require_org(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id)
    if org is None or not org.is_active:
        raise ValidationFailed("Organization not found", details={"org_id": org_id})
    return org


def get_tenant_settings(org_id: int) -> TenantSettings:
    org = require_org(org_id)
    return TenantSettings(
        org_id=org.id,
        invoice_prefix=org.invoice_prefix,
        default_tax_rate_bps=org.default_tax_rate_bps,
        allow_negative_stock=org.allow_negative_stock,
        default_currency=org.default_currency,
    )


def require_store_in_org(store_id: int, org_id: int) -> Store:
    """
    Validate that a store belongs to the specified organization.

    Raises:
        ValidationFailed if the store does not exist
        CrossTenantAccess if it belongs to a different organization
    """
    store = db.session.get(Store, store_id)
    if store is None:
        raise ValidationFailed("Store not found", details={"store_id": store_id})
    if store.org_id != org_id:
        current_app.logger.warning(
            "Cross-tenant store access denied: store_id=%s org_id=%s", store_id, org_id
        )
        raise CrossTenantAccess("Store belongs to another organization", details={"store_id": store_id})
    if not store.is_active:
        raise ValidationFailed("Store is inactive", details={"store_id": store_id})
    return store


def require_product_in_org(product_id: int, org_id: int, *, hide_foreign: bool = False) -> Product:
    """
    Resolve a catalog product for the tenant.

    hide_foreign=True reports a foreign product as ProductNotFound instead of
    CrossTenantAccess, for operations whose contract does not expose it.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound("Product not found", details={"product_id": product_id})
    if product.org_id != org_id:
        current_app.logger.warning(
            "Cross-tenant product access denied: product_id=%s org_id=%s", product_id, org_id
        )
        if hide_foreign:
            raise ProductNotFound("Product not found", details={"product_id": product_id})
        raise CrossTenantAccess("Product belongs to another organization", details={"product_id": product_id})
    return product


def require_customer_in_org(customer_id: int, org_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise ValidationFailed("Customer not found", details={"customer_id": customer_id})
    if customer.org_id != org_id:
        raise CrossTenantAccess("Customer belongs to another organization", details={"customer_id": customer_id})
    return customer


def create_organization(
    *,
    name: str,
    code: str | None = None,
    invoice_prefix: str | None = None,
    default_tax_rate_bps: int | None = None,
    default_currency: str | None = None,
    allow_negative_stock: bool = False,
    store_name: str | None = "Main Store",
) -> Organization:
    """
    Create an organization (and optionally its first store).

    Settings not supplied fall back to the application defaults.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("Organization name is required")

    config = current_app.config
    org = Organization(
        name=name,
        code=code,
        invoice_prefix=invoice_prefix or config["DEFAULT_INVOICE_PREFIX"],
        default_tax_rate_bps=(
            default_tax_rate_bps if default_tax_rate_bps is not None else config["DEFAULT_TAX_RATE_BPS"]
        ),
        default_currency=default_currency or config["DEFAULT_CURRENCY"],
        allow_negative_stock=allow_negative_stock,
    )
    db.session.add(org)
    db.session.flush()

    if store_name:
        db.session.add(Store(org_id=org.id, name=store_name))

    db.session.commit()
    current_app.logger.info("Organization created: id=%s name=%s", org.id, org.name)
    return org
