"""
Module: ownership_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors -- the
    query surface presentation layers (investor dashboards, operator
    consoles) are allowed to touch.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ DTOs.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never call session.add(), delete(),
      flush() or commit().
    - DTO return convention: selectors return frozen dataclasses, never ORM
      instances.
    - Nothing is stored: totals are derived from grants and line items at
      query time.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries, and
        returns DTOs.  The caller owns the session and its transaction.
    """

    def __init__(self, session: Session):
        self.session = session
