# Overview: Pytest coverage for per-tenant document sequence allocation.

import pytest

from posledger.errors import ValidationFailed
from posledger.extensions import db
from posledger.models import DocumentSequence
from posledger.services.concurrency import begin_write
from posledger.services.sequence_service import (
    SEQUENCE_INVOICE,
    SEQUENCE_REFUND,
    format_document_number,
    next_document_number,
    next_sequence_value,
    peek_next_value,
)


class TestSequenceAllocation:

    def test_first_allocation_creates_counter(self, db_session, org_a):
        begin_write()
        assert next_sequence_value(org_a.id, SEQUENCE_INVOICE) == 1
        db_session.commit()

        row = db_session.query(DocumentSequence).filter_by(org_id=org_a.id, document_type=SEQUENCE_INVOICE).one()
        assert row.next_number == 2

    def test_values_increase_without_gaps(self, db_session, org_a):
        begin_write()
        values = [next_sequence_value(org_a.id, SEQUENCE_INVOICE) for _ in range(5)]
        db_session.commit()
        assert values == [1, 2, 3, 4, 5]
        assert peek_next_value(org_a.id, SEQUENCE_INVOICE) == 6

    def test_counters_are_per_tenant_and_type(self, db_session, org_a, org_b):
        begin_write()
        assert next_sequence_value(org_a.id, SEQUENCE_INVOICE) == 1
        assert next_sequence_value(org_a.id, SEQUENCE_INVOICE) == 2
        assert next_sequence_value(org_b.id, SEQUENCE_INVOICE) == 1
        assert next_sequence_value(org_a.id, SEQUENCE_REFUND) == 1
        db_session.commit()

    def test_rolled_back_value_is_handed_out_again(self, db_session, org_a):
        begin_write()
        assert next_sequence_value(org_a.id, SEQUENCE_INVOICE) == 1
        db_session.commit()

        begin_write()
        assert next_sequence_value(org_a.id, SEQUENCE_INVOICE) == 2
        db_session.rollback()

        begin_write()
        assert next_sequence_value(org_a.id, SEQUENCE_INVOICE) == 2
        db_session.commit()

    def test_peek_without_counter(self, db_session, org_a):
        assert peek_next_value(org_a.id, SEQUENCE_INVOICE) == 1

    def test_requires_org_and_type(self, db_session, org_a):
        with pytest.raises(ValidationFailed):
            next_sequence_value(None, SEQUENCE_INVOICE)
        with pytest.raises(ValidationFailed):
            next_sequence_value(org_a.id, "")


class TestDocumentNumbers:

    def test_format_uses_configured_padding(self, app):
        assert format_document_number("INV", 42) == "INV-000042"

    def test_explicit_padding(self, app):
        assert format_document_number("RF", 7, pad=3) == "RF-007"

    def test_next_document_number(self, db_session, org_a):
        begin_write()
        first = next_document_number(org_id=org_a.id, document_type=SEQUENCE_INVOICE, prefix="INV")
        second = next_document_number(org_id=org_a.id, document_type=SEQUENCE_INVOICE, prefix="INV")
        db.session.commit()
        assert (first, second) == ("INV-000001", "INV-000002")
