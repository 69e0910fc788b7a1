"""
Typed Exception Hierarchy for the Ownership Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (investment flows, operator consoles, batch jobs) need
to react to business-rule violations precisely.  Parsing message strings is
fragile, so every error:

  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        ledger.grant_ownership(asset_id, investor_id, 1500, 150_000_00)
    except OverAllocationError as e:
        api_response(code=e.code, available=e.available_basis_points)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    OwnershipKernelError (base)
    |
    +-- AssetError
    |   +-- AssetNotFoundError
    |   +-- InvalidTransitionError
    |   +-- AssetNotInvestableError
    |   +-- InvalidHealthError
    |
    +-- OwnershipError
    |   +-- InvalidFractionError
    |   +-- OverAllocationError
    |   +-- InvalidAmountError
    |   +-- GrantNotFoundError
    |   +-- GrantAlreadyCancelledError
    |   +-- InvestorNotVerifiedError
    |
    +-- DistributionError
    |   +-- NoOwnersError
    |   +-- InvalidPeriodError
    |   +-- DistributionRunNotFoundError
    |   +-- IdempotencyKeyConflictError
    |   +-- ConservationViolationError
    |
    +-- PersistenceError
    |   +-- PersistenceFailureError
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                      | When Raised
--------------|---------------------------|------------------------------------------
Asset         | ASSET_NOT_FOUND           | Asset ID doesn't exist
              | INVALID_TRANSITION        | Lifecycle change not permitted
              | ASSET_NOT_INVESTABLE      | Grant against a non-active asset
              | INVALID_HEALTH            | Health metric outside 0..100
--------------|---------------------------|------------------------------------------
Ownership     | INVALID_FRACTION          | Basis points outside (0, 10000]
              | OVER_ALLOCATION           | Grant would push asset past 10000 bps
              | INVALID_AMOUNT            | Negative or non-integer minor units
              | GRANT_NOT_FOUND           | Grant ID doesn't exist
              | GRANT_ALREADY_CANCELLED   | Cancelling an inactive grant
              | INVESTOR_NOT_VERIFIED     | KYC assertion false or missing
--------------|---------------------------|------------------------------------------
Distribution  | NO_OWNERS                 | Snapshot has no active grants
              | INVALID_PERIOD            | Period end before start
              | DISTRIBUTION_RUN_NOT_FOUND| Run ID doesn't exist
              | IDEMPOTENCY_KEY_CONFLICT  | Key reused for a different request
              | INVARIANT_VIOLATION       | Line items don't sum to total (bug)
--------------|---------------------------|------------------------------------------
Persistence   | PERSISTENCE_FAILURE       | Store failed mid-run (retryable)
--------------|---------------------------|------------------------------------------
Currency      | INVALID_CURRENCY          | Not a supported ISO 4217 code
--------------|---------------------------|------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION    | Editing/deleting an append-only record

A duplicate distribution request is NOT an error: the executor returns the
prior completed run with status ALREADY_COMPLETED.

Persistence and invariant errors deliberately carry only the run id in their
message; storage detail goes to the structured log, not to the caller.
"""


class OwnershipKernelError(Exception):
    """
    Base exception for all ownership kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "OWNERSHIP_KERNEL_ERROR"


# Asset-related exceptions


class AssetError(OwnershipKernelError):
    """Base exception for asset registry errors."""

    code: str = "ASSET_ERROR"


class AssetNotFoundError(AssetError):
    """Asset with given ID was not found."""

    code: str = "ASSET_NOT_FOUND"

    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(f"Asset not found: {asset_id}")


class InvalidTransitionError(AssetError):
    """Asset lifecycle transition is not permitted."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, asset_id: str, from_status: str, to_status: str):
        self.asset_id = asset_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Asset {asset_id} cannot move from '{from_status}' to '{to_status}'"
        )


class AssetNotInvestableError(AssetError):
    """Ownership can only be granted against active assets."""

    code: str = "ASSET_NOT_INVESTABLE"

    def __init__(self, asset_id: str, status: str):
        self.asset_id = asset_id
        self.status = status
        super().__init__(
            f"Asset {asset_id} is '{status}' and not open for investment"
        )


class InvalidHealthError(AssetError):
    """Health metric is outside the 0..100 range."""

    code: str = "INVALID_HEALTH"

    def __init__(self, health: object):
        self.health = health
        super().__init__(f"Health must be an integer between 0 and 100, got {health!r}")


# Ownership-related exceptions


class OwnershipError(OwnershipKernelError):
    """Base exception for ownership ledger errors."""

    code: str = "OWNERSHIP_ERROR"


class InvalidFractionError(OwnershipError):
    """Requested fraction is not an integer in (0, 10000] basis points."""

    code: str = "INVALID_FRACTION"

    def __init__(self, basis_points: object):
        self.basis_points = basis_points
        super().__init__(
            f"Fraction must be an integer between 1 and 10,000 basis points, "
            f"got {basis_points!r}"
        )


class OverAllocationError(OwnershipError):
    """Grant would push the asset's total ownership past 100%."""

    code: str = "OVER_ALLOCATION"

    def __init__(
        self,
        asset_id: str,
        allocated_basis_points: int,
        requested_basis_points: int,
    ):
        self.asset_id = asset_id
        self.allocated_basis_points = allocated_basis_points
        self.requested_basis_points = requested_basis_points
        self.available_basis_points = 10_000 - allocated_basis_points
        super().__init__(
            f"Asset {asset_id} already has {allocated_basis_points:,}/10,000 "
            f"basis points allocated; requested {requested_basis_points:,}, "
            f"available {self.available_basis_points:,}"
        )


class InvalidAmountError(OwnershipError):
    """Monetary amount is not a non-negative integer of minor units."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: object):
        self.field = field
        self.amount = amount
        super().__init__(
            f"{field} must be a non-negative integer of minor units, got {amount!r}"
        )


class GrantNotFoundError(OwnershipError):
    """Ownership grant with given ID was not found."""

    code: str = "GRANT_NOT_FOUND"

    def __init__(self, grant_id: str):
        self.grant_id = grant_id
        super().__init__(f"Ownership grant not found: {grant_id}")


class GrantAlreadyCancelledError(OwnershipError):
    """Grant was already cancelled; cancellation is one-way."""

    code: str = "GRANT_ALREADY_CANCELLED"

    def __init__(self, grant_id: str):
        self.grant_id = grant_id
        super().__init__(f"Ownership grant {grant_id} is already cancelled")


class InvestorNotVerifiedError(OwnershipError):
    """The caller did not assert that the investor passed KYC."""

    code: str = "INVESTOR_NOT_VERIFIED"

    def __init__(self, investor_id: str):
        self.investor_id = investor_id
        super().__init__(
            f"Investor {investor_id} has no verified-investor assertion"
        )


# Distribution-related exceptions


class DistributionError(OwnershipKernelError):
    """Base exception for distribution errors."""

    code: str = "DISTRIBUTION_ERROR"


class NoOwnersError(DistributionError):
    """Distribution requested for an asset with no active owners."""

    code: str = "NO_OWNERS"

    def __init__(self, asset_id: str | None = None):
        self.asset_id = asset_id
        if asset_id is None:
            super().__init__("Ownership snapshot is empty")
        else:
            super().__init__(f"Asset {asset_id} has no active owners to distribute to")


class InvalidPeriodError(DistributionError):
    """Revenue period boundaries are malformed."""

    code: str = "INVALID_PERIOD"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid revenue period: {reason}")


class DistributionRunNotFoundError(DistributionError):
    """Distribution run with given ID was not found."""

    code: str = "DISTRIBUTION_RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Distribution run not found: {run_id}")


class IdempotencyKeyConflictError(DistributionError):
    """
    Idempotency key already completed a different request.

    The same key must always describe the same asset and period; reuse
    for another one is a caller bug, not a retry.
    """

    code: str = "IDEMPOTENCY_KEY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_run_id: str):
        self.idempotency_key = idempotency_key
        self.existing_run_id = existing_run_id
        super().__init__(
            f"Idempotency key '{idempotency_key}' already completed run "
            f"{existing_run_id} for a different request"
        )


class ConservationViolationError(DistributionError):
    """
    Line items of a run do not sum to the run's total revenue.

    This indicates a defect in the calculator, never a user error.  The run
    is marked failed with a diagnostic; the message exposes only the run id.
    """

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, run_id: str | None, expected_total: int, actual_total: int):
        self.run_id = run_id
        self.expected_total = expected_total
        self.actual_total = actual_total
        subject = f"Distribution run {run_id}" if run_id else "Distribution"
        super().__init__(f"{subject} failed an internal consistency check")


# Persistence-related exceptions


class PersistenceError(OwnershipKernelError):
    """Base exception for store failures."""

    code: str = "PERSISTENCE_ERROR"


class PersistenceFailureError(PersistenceError):
    """
    The store failed while a run was being written.  Safe to retry.

    ``run_id`` is None when the failure came before the PENDING run was
    committed; nothing was recorded in that case.
    """

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, run_id: str | None):
        self.run_id = run_id
        subject = f"Distribution run {run_id}" if run_id else "Distribution run"
        super().__init__(
            f"{subject} could not be recorded; retry with the same idempotency key"
        )


# Currency-related exceptions


class CurrencyError(OwnershipKernelError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Currency code is not a supported ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


# Immutability-related exceptions


class ImmutabilityError(OwnershipKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    Grants, runs and line items are historical facts; corrections are new
    records, never edits.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
