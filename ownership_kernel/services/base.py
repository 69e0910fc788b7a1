"""
BaseService -- abstract base for ledger services.

Responsibility:
    Provides the common constructor and session-handling contract for the
    services in the kernel layer.  Services receive a SQLAlchemy ``Session``
    and persist through ``session.flush()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Flush-only by default: a service never commits or rolls back unless it
      was explicitly built to own its transaction (``auto_commit=True`` on
      OwnershipLedgerService, and DistributionExecutor, whose two-phase run
      needs a durable PENDING row before line items are written).

Failure modes:
    - A subclass that commits inside a caller's transaction breaks the
      atomicity of multi-step operations.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Query-only presentation views belong in
          ``ownership_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self.session = session
