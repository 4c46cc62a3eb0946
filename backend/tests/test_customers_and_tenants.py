# Overview: Pytest coverage for tenant scoping helpers, tenant creation and customer maintenance.

import pytest

from posledger.errors import CrossTenantAccess, ProductNotFound, ValidationFailed
from posledger.models import AuditLog, Customer, Store
from posledger.patching import patch_from_payload
from posledger.services.customer_service import (
    CustomerPatch,
    apply_customer_delta,
    create_customer,
    update_customer,
)
from posledger.services.concurrency import begin_write
from posledger.services.tenant_service import (
    create_organization,
    get_tenant_settings,
    require_product_in_org,
    require_store_in_org,
)


class TestTenantServiceHelpers:

    def test_require_store_in_org_valid(self, db_session, org_a, store_a):
        assert require_store_in_org(store_a.id, org_a.id).id == store_a.id

    def test_require_store_in_org_cross_tenant(self, db_session, org_a, store_b):
        with pytest.raises(CrossTenantAccess):
            require_store_in_org(store_b.id, org_a.id)

    def test_require_store_in_org_nonexistent(self, db_session, org_a):
        with pytest.raises(ValidationFailed):
            require_store_in_org(99999, org_a.id)

    def test_inactive_store_rejected(self, db_session, org_a, store_a):
        store_a.is_active = False
        db_session.commit()
        with pytest.raises(ValidationFailed):
            require_store_in_org(store_a.id, org_a.id)

    def test_foreign_product_hidden_on_request(self, db_session, org_a, product_b):
        with pytest.raises(CrossTenantAccess):
            require_product_in_org(product_b.id, org_a.id)
        with pytest.raises(ProductNotFound):
            require_product_in_org(product_b.id, org_a.id, hide_foreign=True)

    def test_settings_snapshot(self, db_session, org_a):
        settings = get_tenant_settings(org_a.id)
        assert settings.invoice_prefix == "INV"
        assert settings.default_tax_rate_bps == 1500
        assert settings.allow_negative_stock is False

    def test_inactive_org_rejected(self, db_session, org_a):
        org_a.is_active = False
        db_session.commit()
        with pytest.raises(ValidationFailed):
            get_tenant_settings(org_a.id)


class TestCreateOrganization:

    def test_defaults_from_config(self, db_session, app):
        org = create_organization(name="Gamma", code="GAM")
        assert org.invoice_prefix == app.config["DEFAULT_INVOICE_PREFIX"]
        assert org.default_tax_rate_bps == app.config["DEFAULT_TAX_RATE_BPS"]
        assert org.default_currency == app.config["DEFAULT_CURRENCY"]
        stores = db_session.query(Store).filter_by(org_id=org.id).all()
        assert [s.name for s in stores] == ["Main Store"]

    def test_explicit_settings_and_no_store(self, db_session):
        org = create_organization(
            name="Delta", code="DEL", invoice_prefix="DL", default_tax_rate_bps=0,
            allow_negative_stock=True, store_name=None,
        )
        assert (org.invoice_prefix, org.default_tax_rate_bps, org.allow_negative_stock) == ("DL", 0, True)
        assert db_session.query(Store).filter_by(org_id=org.id).count() == 0

    def test_name_required(self, db_session):
        with pytest.raises(ValidationFailed):
            create_organization(name="  ")


class TestCustomers:

    def test_create_allocates_codes(self, db_session, org_a, org_b):
        first = create_customer(org_id=org_a.id, name="Bob", email="bob@example.com")
        second = create_customer(org_id=org_a.id, name="Carol")
        other = create_customer(org_id=org_b.id, name="Dan")

        assert (first.code, second.code, other.code) == ("CUST-000001", "CUST-000002", "CUST-000001")
        assert db_session.query(AuditLog).filter_by(action="CUSTOMER_CREATED").count() == 3

    @pytest.mark.parametrize("kwargs", [
        {"name": ""},
        {"name": "Eve", "email": "not-an-email"},
    ])
    def test_create_validation(self, db_session, org_a, kwargs):
        with pytest.raises(ValidationFailed):
            create_customer(org_id=org_a.id, **kwargs)
        assert db_session.query(Customer).count() == 0

    def test_update_contact_fields(self, db_session, org_a, customer_a):
        customer = update_customer(
            org_id=org_a.id,
            customer_id=customer_a.id,
            patch=patch_from_payload(CustomerPatch, {"phone": "+966500000000", "email": None}),
        )
        assert customer.phone == "+966500000000"
        assert customer.email is None
        audit = db_session.query(AuditLog).filter_by(action="CUSTOMER_UPDATED").one()
        assert audit.before["email"] == "alice@example.com"

    @pytest.mark.parametrize("field", ["total_orders", "total_spent_cents", "current_balance_cents", "last_order_at"])
    def test_aggregates_not_patchable(self, field):
        with pytest.raises(ValidationFailed):
            patch_from_payload(CustomerPatch, {field: 0})

    def test_update_rejects_wrong_types(self, db_session, org_a, customer_a):
        with pytest.raises(ValidationFailed):
            update_customer(org_id=org_a.id, customer_id=customer_a.id, patch=CustomerPatch(is_active="yes"))
        with pytest.raises(ValidationFailed):
            update_customer(org_id=org_a.id, customer_id=customer_a.id, patch=CustomerPatch(name=None))

    def test_update_cross_tenant_denied(self, db_session, org_b, customer_a):
        with pytest.raises(CrossTenantAccess):
            update_customer(org_id=org_b.id, customer_id=customer_a.id, patch=CustomerPatch(name="Mallory"))

    def test_apply_delta_is_relative(self, db_session, org_a, customer_a):
        begin_write()
        apply_customer_delta(customer_a, spent_delta=1000, orders_delta=1, balance_delta=400)
        apply_customer_delta(customer_a, spent_delta=-300, balance_delta=-400)
        db_session.commit()

        customer = db_session.get(Customer, customer_a.id)
        assert (customer.total_spent_cents, customer.total_orders, customer.current_balance_cents) == (700, 1, 0)
