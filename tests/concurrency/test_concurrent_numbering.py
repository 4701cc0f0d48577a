"""
Concurrent document numbering.

Every thread takes its own session from the session factory and creates a
document on the same (document_type, scope_key).  No two committed
documents may share a number and no number may be skipped.

Run with: pytest tests/concurrency -v
Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from threading import Barrier

import pytest
from sqlalchemy import func, select, text

from voucher_kernel.domain.documents import DocumentType
from voucher_kernel.exceptions import SequenceContentionError
from voucher_kernel.models.document import FinancialDocument
from voucher_kernel.services.document_service import DocumentService
from voucher_kernel.services.sequence_service import (
    NumberingStrategy,
    NumberSequenceService,
)

pytestmark = pytest.mark.slow_locks


def _seed(session_factory, document_type, scope_key, value):
    with session_factory() as sess:
        NumberSequenceService(sess).reset(document_type, scope_key, value)
        sess.commit()


def _create_concurrently(session_factory, payload_factory, num_threads, **service_kwargs):
    barrier = Barrier(num_threads, timeout=30)

    def create(thread_id: int) -> int:
        with session_factory() as sess:
            service = DocumentService(sess, **service_kwargs)
            barrier.wait()
            return service.create_document(payload_factory()).number

    with ThreadPoolExecutor(max_workers=num_threads) as executor:
        futures = [executor.submit(create, i) for i in range(num_threads)]
        return [f.result() for f in as_completed(futures)]


class TestConcurrentCreation:

    def test_two_creations_from_counter_ten(self, session_factory, cheque_payload):
        _seed(session_factory, DocumentType.CHEQUE, "BookA", 10)

        numbers = _create_concurrently(session_factory, cheque_payload, 2)

        assert sorted(numbers) == [11, 12]

    def test_ten_threads_get_distinct_consecutive_numbers(self, session_factory, cheque_payload):
        _seed(session_factory, DocumentType.CHEQUE, "BookA", 100)

        numbers = _create_concurrently(session_factory, cheque_payload, 10)

        assert sorted(numbers) == list(range(101, 111))

        with session_factory() as sess:
            stored = sess.scalars(
                select(FinancialDocument.number).where(
                    FinancialDocument.document_type == "cheque",
                    FinancialDocument.scope_key == "BookA",
                )
            ).all()
            last = NumberSequenceService(sess).current_value(DocumentType.CHEQUE, "BookA")
        assert sorted(stored) == sorted(numbers)
        assert last == 110

    def test_first_use_race_creates_one_counter(self, session_factory, voucher_payload):
        numbers = _create_concurrently(session_factory, voucher_payload, 8)

        assert sorted(numbers) == list(range(1, 9))

        with session_factory() as sess:
            counters = sess.execute(
                text(
                    "SELECT COUNT(*) FROM number_sequence_counters "
                    "WHERE document_type = 'voucher' AND scope_key = 'BookA'"
                )
            ).scalar_one()
        assert counters == 1

    def test_optimistic_strategy_under_concurrency(self, session_factory, cheque_payload):
        _seed(session_factory, DocumentType.CHEQUE, "BookA", 0)

        numbers = _create_concurrently(
            session_factory,
            cheque_payload,
            8,
            strategy=NumberingStrategy.OPTIMISTIC,
            max_retries=50,
        )

        assert sorted(numbers) == list(range(1, 9))

    def test_separate_books_do_not_interfere(self, session_factory, cheque_payload):
        barrier = Barrier(6, timeout=30)
        books = ["BookA", "BookB", "BookC"] * 2

        def create(book: str) -> tuple[str, int]:
            with session_factory() as sess:
                service = DocumentService(sess)
                barrier.wait()
                return book, service.create_document(cheque_payload(scope_key=book)).number

        with ThreadPoolExecutor(max_workers=6) as executor:
            results = [f.result() for f in [executor.submit(create, b) for b in books]]

        for book in set(books):
            assert sorted(n for b, n in results if b == book) == [1, 2]


@pytest.mark.postgres
class TestLockTimeout:

    def test_held_counter_lock_surfaces_as_contention(self, session_factory, cheque_payload):
        _seed(session_factory, DocumentType.CHEQUE, "BookA", 5)
        holder = session_factory()
        waiter = session_factory()
        try:
            # First transaction reserves 6 and keeps the row lock.
            assert NumberSequenceService(holder).reserve_next(DocumentType.CHEQUE, "BookA") == 6

            waiter.execute(text("SET LOCAL lock_timeout = '200ms'"))
            with pytest.raises(SequenceContentionError) as exc_info:
                DocumentService(waiter).create_document(cheque_payload())
            assert exc_info.value.retryable

            holder.rollback()
            # Retrying after the holder released the lock reuses 6; no gap.
            assert DocumentService(waiter).create_document(cheque_payload()).number == 6
        finally:
            holder.close()
            waiter.close()

        with session_factory() as sess:
            count = sess.scalar(select(func.count()).select_from(FinancialDocument))
        assert count == 1


def test_threads_do_not_share_log_context(session_factory, cheque_payload, captured_logs):
    barrier = Barrier(2, timeout=30)

    def create(book: str) -> None:
        with session_factory() as sess:
            barrier.wait()
            DocumentService(sess).create_document(cheque_payload(scope_key=book))

    with ThreadPoolExecutor(max_workers=2) as executor:
        for f in [executor.submit(create, b) for b in ("BookA", "BookB")]:
            f.result()

    created = [r for r in captured_logs() if r["message"] == "document_created"]
    assert sorted(r["scope_key"] for r in created) == ["BookA", "BookB"]
