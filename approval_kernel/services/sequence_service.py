"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly monotonically increasing sequence numbers for audit
    events.  Uses a dedicated counter table with row-level locking
    (``SELECT ... FOR UPDATE``) to guarantee uniqueness and ordering under
    concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by AuditorService.

Invariants enforced:
    - Sequences are strictly monotonic.  The aggregate-max-plus-one
      anti-pattern is never used -- the locked counter row is the sole
      source of truth for the next value.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: two transactions creating the same missing counter.
      ``initialize_sequences()`` at table creation avoids this path.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from approval_kernel.db.base import Base
from approval_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    AUDIT_EVENT = "audit_event"

    WELL_KNOWN = (AUDIT_EVENT,)

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row, increment it and return the new value.

        Postconditions:
            - Returns an integer > 0 strictly greater than any previously
              returned value for this sequence name.
            - The counter row is locked until the transaction completes.
        """
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def initialize_sequences(self) -> None:
        """Create every well-known counter row that does not exist yet."""
        for name in self.WELL_KNOWN:
            existing = self._session.execute(
                select(SequenceCounter).where(SequenceCounter.name == name)
            ).scalar_one_or_none()
            if existing is None:
                self._session.add(SequenceCounter(name=name, current_value=0))
        self._session.flush()
