"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service in the kernel layer.  Concrete services receive a
    SQLAlchemy ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (ApprovalGateway or a test harness) owns commit/rollback, so a
      failed submit/approve/reject leaves no partial state behind.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel write services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide list/queue reads -- those belong in
          ``approval_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
