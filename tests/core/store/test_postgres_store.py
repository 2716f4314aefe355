"""
Tests for PostgresLedgerStore.

Runs the ledger services end to end against PostgreSQL. Skipped unless
DATABASE_URL points at a disposable database.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

from builders import invoice_data, item, payment_data
from core.audit import AuditLogger
from core.errors import AmountExceedsBalanceError, DuplicateInvoiceNumberError, InvalidStateError, InvoiceNotFoundError
from core.event_bus import EventBus
from core.models import InvoiceStatus, PaymentStatus, RefundRequest
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from utils.tenant_context import tenant_context


@pytest.fixture
def services(pg_store):
    audit = AuditLogger(pg_store)
    bus = EventBus()
    return InvoiceService(pg_store, audit, bus), PaymentService(pg_store, audit, bus)


@pytest.fixture
def tenant(company_id):
    with tenant_context(company_id):
        yield company_id


class TestInvoiceRoundTrip:

    def test_create_and_read(self, services, tenant):
        invoices, _ = services
        created = invoices.create_invoice(tenant, invoice_data(
            items=[item("Cut", "50", "2"), item("Colour", "45")], tax_rate=Decimal("10"),
        ))

        fetched = invoices.get_invoice(created.id, tenant)

        assert fetched.invoice_number == "INV-0001"
        assert fetched.total == Decimal("159.50")
        assert [i.description for i in fetched.items] == ["Cut", "Colour"]

    def test_numbers_sequential_and_not_reused(self, services, tenant):
        invoices, _ = services
        first = invoices.create_invoice(tenant, invoice_data())
        invoices.delete_invoice(first.id, tenant)

        assert invoices.create_invoice(tenant, invoice_data()).invoice_number == "INV-0002"

    def test_duplicate_number_maps_to_ledger_error(self, pg_store, services, tenant):
        invoices, _ = services
        created = invoices.create_invoice(tenant, invoice_data())

        with pytest.raises(DuplicateInvoiceNumberError):
            with pg_store.transaction() as tx:
                row = tx.get_invoice(tenant, created.id)
                tx.insert_invoice({**row, "id": uuid4()})


class TestPaymentFlow:

    def test_payments_and_refund(self, services, tenant):
        invoices, payments = services
        invoice = invoices.create_invoice(tenant, invoice_data())
        invoices.send_invoice(invoice.id, tenant)

        first = payments.record_payment(tenant, payment_data(invoice, "40"))
        payments.record_payment(tenant, payment_data(invoice, "60"))
        assert invoices.get_invoice(invoice.id, tenant).status == InvoiceStatus.PAID

        payments.process_refund(first.id, tenant, RefundRequest(amount=Decimal("15")))
        after = invoices.get_invoice(invoice.id, tenant)

        assert after.paid_amount == Decimal("85.00")
        assert after.balance_amount == Decimal("15.00")
        assert after.status == InvoiceStatus.PARTIAL
        assert after.paid_at is None
        assert sorted(p.amount for p in after.payments) == [Decimal("-15"), Decimal("40"), Decimal("60")]
        assert {p.status for p in after.payments} == {PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}

    def test_concurrent_payments_never_overpay(self, services, company_id):
        invoices, payments = services
        with tenant_context(company_id):
            invoice = invoices.create_invoice(company_id, invoice_data())
            invoices.send_invoice(invoice.id, company_id)

        def pay(_):
            with tenant_context(company_id):
                try:
                    payments.record_payment(company_id, payment_data(invoice, "30"))
                    return True
                except (AmountExceedsBalanceError, InvalidStateError):
                    return False

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(pay, range(6)))

        with tenant_context(company_id):
            final = invoices.get_invoice(invoice.id, company_id)
        assert results.count(True) == 3
        assert final.paid_amount == Decimal("90")
        assert final.balance_amount == Decimal("10")


class TestTenantIsolation:

    def test_other_company_cannot_read(self, services, company_id, company_b_id):
        invoices, _ = services
        with tenant_context(company_id):
            invoice = invoices.create_invoice(company_id, invoice_data())

        with tenant_context(company_b_id):
            with pytest.raises(InvoiceNotFoundError):
                invoices.get_invoice(invoice.id, company_b_id)
            assert invoices.list_invoices(company_b_id).total == 0
