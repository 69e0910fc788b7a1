"""
ORM-Level Immutability Enforcement for the ownership ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

Ownership grants, distribution runs and their line items are historical
facts.  Investors are paid from them and auditors reconcile against them, so
they are corrected by writing NEW records (a cancellation plus a new grant,
a corrective run), never by editing old ones.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise
ImmutabilityViolationError before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _block_delete() ----------/

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                | Rule
----------------------|------------------------------------------------------
Asset                 | Never deleted (retire instead)
OwnershipGrant        | Only ACTIVE -> CANCELLED (+ cancellation metadata);
                      | never deleted
DistributionRun       | Only PENDING -> COMPLETED | FAILED (+ completion or
                      | failure metadata); frozen once terminal; never deleted
DistributionLineItem  | Frozen from creation; never deleted

updated_at / updated_by_id are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from ownership_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once, at startup

Tests that need to provoke a violation deliberately can call
unregister_immutability_listeners() and re-register afterwards.
"""

from sqlalchemy import event, inspect

from ownership_kernel.exceptions import ImmutabilityViolationError
from ownership_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

_GRANT_CANCELLATION_FIELDS = frozenset({"status", "cancelled_at", "cancellation_reason"})

_RUN_TRANSITION_FIELDS = frozenset({
    "status",
    "completion_key",
    "completed_idempotency_key",
    "completed_at",
    "failed_at",
    "failure_reason",
    "diagnostic",
})


def _changed_fields(target) -> list[str]:
    """Column attributes with pending changes, excluding audit metadata."""
    insp = inspect(target)
    changed = []
    for attr in insp.mapper.column_attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if insp.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


def _previous_value(target, field: str):
    """Value the row held in the database before this flush."""
    hist = inspect(target).attrs[field].history
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return getattr(target, field)


def _violation(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_grant_immutability(mapper, connection, target):
    """
    Allow exactly one mutation of a grant: ACTIVE -> CANCELLED.

    Logic:
        1. Any change outside status/cancellation fields: block.
        2. Status changing away from CANCELLED, or any change on an
           already-cancelled grant: block.
        3. Cancellation fields changing without status moving to
           CANCELLED: block.
    """
    from ownership_kernel.models.ownership import GrantStatus, OwnershipGrant

    if not isinstance(target, OwnershipGrant):
        return

    changed = _changed_fields(target)
    if not changed:
        return

    for field in changed:
        if field not in _GRANT_CANCELLATION_FIELDS:
            raise _violation(
                "OwnershipGrant", target, "UPDATE",
                f"Cannot modify field '{field}' on an ownership grant",
                field,
            )

    previous_status = _previous_value(target, "status")
    if previous_status == GrantStatus.CANCELLED:
        raise _violation(
            "OwnershipGrant", target, "UPDATE",
            "Cancelled ownership grants cannot be modified",
        )

    if target.status != GrantStatus.CANCELLED:
        raise _violation(
            "OwnershipGrant", target, "UPDATE",
            "Ownership grants may only transition from active to cancelled",
        )


def _check_run_immutability(mapper, connection, target):
    """
    Allow the single PENDING -> COMPLETED | FAILED transition; freeze after.
    """
    from ownership_kernel.models.distribution import (
        TERMINAL_RUN_STATUSES,
        DistributionRun,
        RunStatus,
    )

    if not isinstance(target, DistributionRun):
        return

    changed = _changed_fields(target)
    if not changed:
        return

    previous_status = _previous_value(target, "status")
    if previous_status in TERMINAL_RUN_STATUSES:
        raise _violation(
            "DistributionRun", target, "UPDATE",
            f"Distribution runs are immutable once {previous_status}",
        )

    for field in changed:
        if field not in _RUN_TRANSITION_FIELDS:
            raise _violation(
                "DistributionRun", target, "UPDATE",
                f"Cannot modify field '{field}' on a distribution run",
                field,
            )

    if target.status == RunStatus.PENDING:
        raise _violation(
            "DistributionRun", target, "UPDATE",
            "Pending runs may only be completed or failed",
        )


def _check_line_item_immutability(mapper, connection, target):
    """Line items are frozen from creation."""
    from ownership_kernel.models.distribution import DistributionLineItem

    if not isinstance(target, DistributionLineItem):
        return

    changed = _changed_fields(target)
    if changed:
        raise _violation(
            "DistributionLineItem", target, "UPDATE",
            "Distribution line items are immutable",
            changed[0],
        )


def _block_delete(mapper, connection, target):
    """None of the ledger tables accept DELETE."""
    entity_type = type(target).__name__
    raise _violation(
        entity_type, target, "DELETE",
        f"{entity_type} records are append-only and cannot be deleted",
    )


def _listener_table():
    from ownership_kernel.models.asset import Asset
    from ownership_kernel.models.distribution import DistributionLineItem, DistributionRun
    from ownership_kernel.models.ownership import OwnershipGrant

    return [
        (Asset, "before_delete", _block_delete),
        (OwnershipGrant, "before_update", _check_grant_immutability),
        (OwnershipGrant, "before_delete", _block_delete),
        (DistributionRun, "before_update", _check_run_immutability),
        (DistributionRun, "before_delete", _block_delete),
        (DistributionLineItem, "before_update", _check_line_item_immutability),
        (DistributionLineItem, "before_delete", _block_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call after models are importable and before any database work begins.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately violate the rules.
    """
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
