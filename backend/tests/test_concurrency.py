# Overview: Pytest coverage for concurrent sale commits, refunds and bounded store-conflict retries.

"""
Concurrency Tests

Run against a file-backed SQLite database so each worker thread gets its
own connection and the write lock is real.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from posledger import create_app
from posledger.errors import AlreadyRefunded, InsufficientStock, TransientStoreConflict
from posledger.extensions import db
from posledger.models import Customer, Organization, Product, Sale, StockMovement, Store
from posledger.services import sales_service, stock_ledger_service
from posledger.services.concurrency import run_with_retry
from posledger.services.refund_service import refund_sale

from conftest import ACTOR_ID, make_sale_request, quick_sale


def _run_threads(count, target):
    threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'STORE_RETRY_ATTEMPTS': 20,
        'STORE_RETRY_BACKOFF': 0.01,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed(allow_negative_stock=False, quantity=10):
    org = Organization(name="Concurrent Org", code="CON", invoice_prefix="INV", allow_negative_stock=allow_negative_stock)
    db.session.add(org)
    db.session.flush()
    store = Store(org_id=org.id, name="Concurrency Store")
    product = Product(org_id=org.id, sku="CONCUR-1", name="Concurrent Product", price_cents=1000, cost_cents=400)
    customer = Customer(org_id=org.id, code="CUST-000001", name="Shared Customer")
    db.session.add_all([store, product, customer])
    db.session.commit()

    if quantity:
        stock_ledger_service.receive_stock(
            org_id=org.id, product_id=product.id, store_id=store.id, quantity=quantity, unit_cost_cents=400,
        )
    return org.id, store.id, product.id, customer.id


def _commit_worker(app, ids, quantity, results, lock, customer=False):
    org_id, store_id, product_id, customer_id = ids

    def worker(_index):
        with app.app_context():
            try:
                sale = sales_service.commit_sale(
                    org_id=org_id,
                    store_id=store_id,
                    actor_id=ACTOR_ID,
                    request=make_sale_request(
                        [(product_id, quantity)],
                        paid_cents=1000,
                        customer_id=customer_id if customer else None,
                    ),
                )
                with lock:
                    results.append(sale.invoice_number)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    return worker


class TestConcurrentCommits:

    def test_invoice_numbers_distinct_and_gap_free(self, file_app):
        ids = _seed(quantity=100)
        results, lock = [], threading.Lock()

        _run_threads(10, _commit_worker(file_app, ids, 1, results, lock))

        errors = [r for r in results if isinstance(r, Exception)]
        assert errors == []
        assert sorted(results) == [f"INV-{n:06d}" for n in range(1, 11)]

    def test_no_lost_stock_or_customer_updates(self, file_app):
        ids = _seed(quantity=100)
        org_id, store_id, product_id, customer_id = ids
        results, lock = [], threading.Lock()

        _run_threads(8, _commit_worker(file_app, ids, 2, results, lock, customer=True))

        db.session.remove()
        level = stock_ledger_service.get_stock_level(org_id=org_id, product_id=product_id, store_id=store_id)
        assert level.quantity == 100 - 8 * 2
        assert level.available_quantity == level.quantity

        movements = (
            db.session.query(StockMovement)
            .filter_by(product_id=product_id, kind="out")
            .order_by(StockMovement.id.asc())
            .all()
        )
        assert len(movements) == 8
        # Each debit saw the quantity the previous one wrote
        for earlier, later in zip(movements, movements[1:]):
            assert later.previous_quantity == earlier.new_quantity

        customer = db.session.get(Customer, customer_id)
        assert customer.total_orders == 8
        total = db.session.query(Sale).first().total_cents
        assert customer.total_spent_cents == 8 * total

    def test_last_unit_race_without_negative_stock(self, file_app):
        ids = _seed(quantity=1)
        org_id, store_id, product_id, _customer_id = ids
        results, lock = [], threading.Lock()

        _run_threads(2, _commit_worker(file_app, ids, 1, results, lock))

        invoices = [r for r in results if isinstance(r, str)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(invoices) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientStock)

        db.session.remove()
        level = stock_ledger_service.get_stock_level(org_id=org_id, product_id=product_id, store_id=store_id)
        assert level.quantity == 0
        assert db.session.query(Sale).count() == 1

    def test_last_unit_race_with_negative_stock(self, file_app):
        ids = _seed(allow_negative_stock=True, quantity=1)
        org_id, store_id, product_id, _customer_id = ids
        results, lock = [], threading.Lock()

        _run_threads(2, _commit_worker(file_app, ids, 1, results, lock))

        assert all(isinstance(r, str) for r in results)
        db.session.remove()
        level = stock_ledger_service.get_stock_level(org_id=org_id, product_id=product_id, store_id=store_id)
        assert level.quantity == -1
        assert level.status == "out_of_stock"

    def test_double_refund_race(self, file_app):
        ids = _seed(quantity=10)
        org_id, store_id, product_id, _customer_id = ids
        sale = sales_service.commit_sale(
            org_id=org_id, store_id=store_id, actor_id=ACTOR_ID,
            request=make_sale_request([(product_id, 3)]),
        )
        sale_id = sale.id
        results, lock = [], threading.Lock()

        def worker(_index):
            with file_app.app_context():
                try:
                    refund = refund_sale(org_id=org_id, sale_id=sale_id, reason="customer return")
                    with lock:
                        results.append(refund.refund_number)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        _run_threads(2, worker)

        assert len([r for r in results if isinstance(r, str)]) == 1
        assert len([r for r in results if isinstance(r, AlreadyRefunded)]) == 1

        db.session.remove()
        level = stock_ledger_service.get_stock_level(org_id=org_id, product_id=product_id, store_id=store_id)
        assert level.quantity == 10
        assert db.session.query(StockMovement).filter_by(reference_type="return").count() == 1


class TestBoundedRetries:

    def test_retries_then_succeeds(self, app):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "ok"

        assert run_with_retry(flaky, attempts=3) == "ok"
        assert len(calls) == 3

    def test_exhausted_retries_surface_transient_conflict(self, app):
        def locked():
            raise OperationalError("UPDATE stock_levels", {}, Exception("database is locked"))

        with pytest.raises(TransientStoreConflict) as exc_info:
            run_with_retry(locked, attempts=2)
        assert exc_info.value.details == {"attempts": 2, "cause": "OperationalError"}

    def test_other_errors_propagate_unchanged(self, app):
        calls = []

        def broken():
            calls.append(1)
            raise KeyError("boom")

        with pytest.raises(KeyError):
            run_with_retry(broken)
        assert len(calls) == 1

    def test_commit_gives_up_cleanly(self, db_session, org_a, store_a, product_a, stocked, monkeypatch):
        """A conflict that never clears fails the sale with nothing persisted."""
        def always_locked(**kwargs):
            raise OperationalError("UPDATE document_sequences", {}, Exception("database is locked"))

        monkeypatch.setattr(sales_service, "next_document_number", always_locked)

        with pytest.raises(TransientStoreConflict):
            quick_sale(org_a, store_a, [(product_a.id, 1)])

        assert db_session.query(Sale).count() == 0
        level = stock_ledger_service.get_stock_level(org_id=org_a.id, product_id=product_a.id, store_id=store_a.id)
        assert level.quantity == 20

    def test_commit_recovers_after_one_conflict(self, db_session, org_a, store_a, product_a, stocked, monkeypatch):
        original = sales_service.next_document_number
        calls = []

        def locked_once(**kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE document_sequences", {}, Exception("database is locked"))
            return original(**kwargs)

        monkeypatch.setattr(sales_service, "next_document_number", locked_once)

        sale = quick_sale(org_a, store_a, [(product_a.id, 1)])
        assert sale.invoice_number == "INV-000001"
        assert len(calls) == 2
