"""
NumberSequenceService -- per-book voucher/cheque number allocation.

Responsibility:
    Hands out the next number for a ``(document_type, scope_key)`` pair.
    Numbers are strictly increasing per key and never handed out twice,
    including under concurrent callers on several server instances.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by DocumentService inside the transaction that inserts the
    document, so the counter advance and the INSERT commit or roll back
    together.

Invariants enforced:
    - Monotonicity: the counter row is the sole source of truth for the
      next value.  Aggregate-maximum-plus-one over the documents table is
      never used.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value (no gap).

Strategies:
    LOCKED      -- ``SELECT ... FOR UPDATE`` on the counter row, increment,
                   flush.  Concurrent callers queue on the row lock.
    OPTIMISTIC  -- compare-and-swap ``UPDATE ... WHERE last_issued = :seen``;
                   a zero rowcount means another writer won and the read is
                   repeated, up to ``max_retries`` times.

Failure modes:
    - SequenceContentionError: lock timeout, deadlock, busy database, or
      CAS retries exhausted.  Nothing was issued; the caller rolls back.
    - IntegrityError on first-use counter creation race: handled via a
      savepoint and re-read, never surfaced.
"""

from enum import Enum

from sqlalchemy import BigInteger, String, UniqueConstraint, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Mapped, Session, mapped_column

from voucher_kernel.db.base import Base
from voucher_kernel.domain.documents import DocumentType
from voucher_kernel.exceptions import SequenceContentionError, ValidationError
from voucher_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class NumberSequenceCounter(Base):
    """
    Sequence counter table.

    One row per ``(document_type, scope_key)``; ``last_issued`` is the last
    number handed out for that key (0 before the first document).
    """

    __tablename__ = "number_sequence_counters"

    __table_args__ = (
        UniqueConstraint("document_type", "scope_key", name="uq_counter_key"),
    )

    document_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    scope_key: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    last_issued: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class NumberingStrategy(str, Enum):
    """Concurrency-control discipline for the counter row."""

    LOCKED = "locked"
    OPTIMISTIC = "optimistic"


class NumberSequenceService:
    """
    Service for reserving document numbers.

    Contract:
        ``reserve_next`` returns the next number for the key.  The caller
        owns the transaction; this service never commits.

    Guarantees:
        - Each committed reservation is strictly greater than every number
          previously committed for the same key.
        - Two concurrent callers never receive the same number.
        - A counter row is created implicitly the first time a key is used.

    Usage:
        numbers = NumberSequenceService(session)
        number = numbers.reserve_next(DocumentType.CHEQUE, "BookA")
        session.add(document_with(number))
        session.commit()    # or rollback -> number is not consumed
    """

    DEFAULT_MAX_RETRIES = 5

    def __init__(
        self,
        session: Session,
        strategy: NumberingStrategy = NumberingStrategy.LOCKED,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self._session = session
        self._strategy = NumberingStrategy(strategy)
        self._max_retries = max_retries

    def reserve_next(self, document_type: DocumentType | str, scope_key: str) -> int:
        """
        Reserve the next number for ``(document_type, scope_key)``.

        Preconditions:
            - ``document_type`` is a known DocumentType.
            - ``scope_key`` is a non-empty string.
            - The caller is within an active transaction.

        Postconditions:
            - Returns an integer >= 1, strictly greater than any previously
              committed value for this key.
            - Under LOCKED, the counter row stays locked until the caller's
              transaction ends.

        Raises:
            ValidationError: Unknown document type or empty scope key.
            SequenceContentionError: The number could not be reserved.
        """
        doc_type = self._check_key(document_type, scope_key)

        try:
            if self._strategy is NumberingStrategy.OPTIMISTIC:
                value = self._reserve_optimistic(doc_type, scope_key)
            else:
                value = self._reserve_locked(doc_type, scope_key)
        except OperationalError as exc:
            logger.warning(
                "sequence_contention",
                extra={
                    "document_type": doc_type.value,
                    "scope_key": scope_key,
                    "strategy": self._strategy.value,
                    "reason": type(exc.orig).__name__ if exc.orig else str(exc),
                },
            )
            raise SequenceContentionError(
                doc_type.value, scope_key, "storage lock could not be acquired"
            ) from exc

        assert value > 0, "document numbers must be strictly positive"
        logger.debug(
            "sequence_allocated",
            extra={
                "document_type": doc_type.value,
                "scope_key": scope_key,
                "value": value,
            },
        )
        return value

    def current_value(self, document_type: DocumentType | str, scope_key: str) -> int | None:
        """
        Last issued number for the key without incrementing.

        Returns:
            Current value, or None if the key has never been used.
        """
        doc_type = self._check_key(document_type, scope_key)
        return self._session.execute(
            select(NumberSequenceCounter.last_issued)
            .where(NumberSequenceCounter.document_type == doc_type.value)
            .where(NumberSequenceCounter.scope_key == scope_key)
        ).scalar_one_or_none()

    def reset(self, document_type: DocumentType | str, scope_key: str, value: int = 0) -> None:
        """
        Set the counter for a key to a specific value.

        WARNING: Only for tests, migrations, and seeding a book that is
        carried over from another system.  Lowering a live counter will
        cause UNIQUE violations on the next insert.
        """
        if value < 0:
            raise ValueError(f"counter value must be >= 0, got {value}")
        doc_type = self._check_key(document_type, scope_key)
        counter = self._lock_counter(doc_type, scope_key)

        if counter is None:
            counter = NumberSequenceCounter(
                document_type=doc_type.value, scope_key=scope_key, last_issued=value
            )
            self._session.add(counter)
        else:
            counter.last_issued = value

        self._session.flush()

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _reserve_locked(self, doc_type: DocumentType, scope_key: str) -> int:
        # Row-level lock serializes concurrent allocations for this key.
        counter = self._lock_counter(doc_type, scope_key)

        if counter is None:
            created = self._create_counter(doc_type, scope_key)
            if created is not None:
                return created
            # Another transaction created the row first; queue on its lock.
            counter = self._lock_counter(doc_type, scope_key)
            if counter is None:
                raise SequenceContentionError(
                    doc_type.value, scope_key, "counter row vanished during creation"
                )

        counter.last_issued += 1
        self._session.flush()
        return counter.last_issued

    def _reserve_optimistic(self, doc_type: DocumentType, scope_key: str) -> int:
        for attempt in range(1, self._max_retries + 1):
            seen = self._session.execute(
                select(NumberSequenceCounter.last_issued)
                .where(NumberSequenceCounter.document_type == doc_type.value)
                .where(NumberSequenceCounter.scope_key == scope_key)
            ).scalar_one_or_none()

            if seen is None:
                created = self._create_counter(doc_type, scope_key)
                if created is not None:
                    return created
                continue

            result = self._session.execute(
                update(NumberSequenceCounter)
                .where(NumberSequenceCounter.document_type == doc_type.value)
                .where(NumberSequenceCounter.scope_key == scope_key)
                .where(NumberSequenceCounter.last_issued == seen)
                .values(last_issued=NumberSequenceCounter.last_issued + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return seen + 1

            logger.debug(
                "sequence_cas_retry",
                extra={
                    "document_type": doc_type.value,
                    "scope_key": scope_key,
                    "attempt": attempt,
                    "seen": seen,
                },
            )

        logger.warning(
            "sequence_contention",
            extra={
                "document_type": doc_type.value,
                "scope_key": scope_key,
                "strategy": self._strategy.value,
                "attempts": self._max_retries,
            },
        )
        raise SequenceContentionError(
            doc_type.value,
            scope_key,
            f"compare-and-swap failed after {self._max_retries} attempts",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_counter(
        self, doc_type: DocumentType, scope_key: str
    ) -> NumberSequenceCounter | None:
        return self._session.execute(
            select(NumberSequenceCounter)
            .where(NumberSequenceCounter.document_type == doc_type.value)
            .where(NumberSequenceCounter.scope_key == scope_key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_counter(self, doc_type: DocumentType, scope_key: str) -> int | None:
        """Insert a counter already advanced to 1, or None if we lost the race.

        A savepoint keeps a losing INSERT from rolling back the caller's
        other work in the transaction.
        """
        savepoint = self._session.begin_nested()
        try:
            self._session.add(
                NumberSequenceCounter(
                    document_type=doc_type.value, scope_key=scope_key, last_issued=1
                )
            )
            self._session.flush()
            savepoint.commit()
            return 1
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"document_type": doc_type.value, "scope_key": scope_key},
            )
            savepoint.rollback()
            return None

    @staticmethod
    def _check_key(document_type: DocumentType | str, scope_key: str) -> DocumentType:
        errors = []
        doc_type = None
        try:
            doc_type = DocumentType(document_type)
        except ValueError:
            errors.append({"field": "document_type", "message": "unknown document type"})
        if not isinstance(scope_key, str) or not scope_key.strip():
            errors.append({"field": "scope_key", "message": "is required"})
        if errors:
            raise ValidationError(errors)
        return doc_type
