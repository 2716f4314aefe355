"""Tests for core/numbering.py - company-scoped sequential invoice numbers."""

from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest

from core.config import LedgerConfig
from core.errors import DuplicateInvoiceNumberError, LedgerValidationError
from core.numbering import InvoiceNumberAllocator, format_invoice_number, parse_sequence
from core.store.memory import InMemoryLedgerStore


def fake_invoice(company_id, number) -> dict:
    """Minimal row the store needs to hold a number."""
    return {"id": uuid4(), "company_id": company_id, "invoice_number": number}


class TestFormatting:

    def test_format(self):
        assert format_invoice_number("INV", 42, 4) == "INV-0042"

    def test_sequence_wider_than_padding(self):
        assert format_invoice_number("INV", 12345, 4) == "INV-12345"

    @pytest.mark.parametrize("number, expected", [
        ("INV-0042", 42),
        ("ACME-7", 7),
        ("LEGACY", 0),
        (None, 0),
    ])
    def test_parse_sequence(self, number, expected):
        assert parse_sequence(number) == expected


class TestAllocate:
    """Tests for InvoiceNumberAllocator.allocate()."""

    @pytest.fixture
    def allocator(self):
        return InvoiceNumberAllocator(LedgerConfig())

    def test_first_number(self, store, allocator, company_id):
        with store.transaction() as tx:
            assert allocator.allocate(tx, company_id) == "INV-0001"

    def test_sequential(self, store, allocator, company_id):
        numbers = []
        for _ in range(3):
            with store.transaction() as tx:
                number = allocator.allocate(tx, company_id)
                tx.insert_invoice(fake_invoice(company_id, number))
            numbers.append(number)

        assert numbers == ["INV-0001", "INV-0002", "INV-0003"]

    def test_companies_have_separate_sequences(self, store, allocator, company_id, company_b_id):
        with store.transaction() as tx:
            tx.insert_invoice(fake_invoice(company_id, allocator.allocate(tx, company_id)))
        with store.transaction() as tx:
            assert allocator.allocate(tx, company_b_id) == "INV-0001"

    def test_numbers_not_reused_after_delete(self, store, allocator, company_id):
        """Deleting the latest invoice doesn't free its number."""
        with store.transaction() as tx:
            row = tx.insert_invoice(fake_invoice(company_id, allocator.allocate(tx, company_id)))
        with store.transaction() as tx:
            tx.delete_invoice(company_id, row["id"])
        with store.transaction() as tx:
            assert allocator.allocate(tx, company_id) == "INV-0002"

    def test_skips_numbers_already_taken(self, store, allocator, company_id):
        """An imported number sitting on the next candidate is skipped over."""
        with store.transaction() as tx:
            tx.insert_invoice(fake_invoice(company_id, "INV-0001"))
            # Latest number has no digits, so the scan starts from 1 again
            tx.insert_invoice(fake_invoice(company_id, "LEGACY"))
        with store.transaction() as tx:
            assert allocator.allocate(tx, company_id) == "INV-0002"

    def test_gives_up_after_max_attempts(self, store, company_id):
        allocator = InvoiceNumberAllocator(LedgerConfig(max_number_attempts=2))
        with store.transaction() as tx:
            tx.insert_invoice(fake_invoice(company_id, "INV-0001"))
            tx.insert_invoice(fake_invoice(company_id, "INV-0002"))
            tx.insert_invoice(fake_invoice(company_id, "X"))

        with pytest.raises(DuplicateInvoiceNumberError):
            with store.transaction() as tx:
                allocator.allocate(tx, company_id)

    def test_uses_company_prefix_and_padding(self, store, allocator, company_id):
        with store.transaction() as tx:
            allocator.configure(tx, company_id, "ACME", 6)
        with store.transaction() as tx:
            assert allocator.allocate(tx, company_id) == "ACME-000001"

    def test_concurrent_allocation_is_unique(self, allocator, company_id):
        store = InMemoryLedgerStore()

        def create(_):
            with store.transaction() as tx:
                number = allocator.allocate(tx, company_id)
                tx.insert_invoice(fake_invoice(company_id, number))
                return number

        with ThreadPoolExecutor(max_workers=8) as pool:
            numbers = list(pool.map(create, range(40)))

        assert len(set(numbers)) == 40


class TestConfigure:

    @pytest.mark.parametrize("prefix, padding", [("", 4), ("IN-V", 4), ("INV", 0), ("INV", 13)])
    def test_rejects_bad_settings(self, store, company_id, prefix, padding):
        with pytest.raises(LedgerValidationError):
            with store.transaction() as tx:
                InvoiceNumberAllocator().configure(tx, company_id, prefix, padding)

