"""
Module: approval_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors form the "Q" side of the kernel, providing structured read
    access to requests and policies without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors never call session.add(), delete(),
      commit() or flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from approval_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs or computed results.
    """

    def __init__(self, session: Session):
        self.session = session
