"""Domain exceptions for the Agent Marketplace.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
The chain indexer never raises them for missing entities: it logs and skips.
"""


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Not Found ---


class NotFoundError(MarketplaceError):
    """Base class for lookups that matched nothing (HTTP 404)."""


class ListingNotFoundError(NotFoundError):
    """Raised when a listing ID does not exist."""

    def __init__(self, listing_id: int) -> None:
        super().__init__(
            message=f"Listing not found: {listing_id}",
            code="LISTING_NOT_FOUND",
        )
        self.listing_id = listing_id


class TransactionNotFoundError(NotFoundError):
    """Raised when no transaction in the required status exists for a listing."""

    def __init__(self, listing_id: int, status: str | None = None) -> None:
        if status:
            message = f"No {status} purchase found for listing {listing_id}"
        else:
            message = f"Transaction not found for listing {listing_id}"
        super().__init__(message=message, code="TRANSACTION_NOT_FOUND")
        self.listing_id = listing_id
        self.status = status


class AgentNotFoundError(NotFoundError):
    """Raised when neither an agent ID nor an address matches."""

    def __init__(self, identifier: str) -> None:
        super().__init__(
            message=f"Agent not found: {identifier}",
            code="AGENT_NOT_FOUND",
        )
        self.identifier = identifier


# --- Conflicts ---


class ConflictError(MarketplaceError):
    """Base class for duplicate requests and failed state guards (HTTP 409)."""


class ListingAlreadyExistsError(ConflictError):
    def __init__(self, listing_id: int) -> None:
        super().__init__(
            message=f"Listing already exists: {listing_id}",
            code="LISTING_ALREADY_EXISTS",
        )
        self.listing_id = listing_id


class AgentAlreadyRegisteredError(ConflictError):
    def __init__(self, agent_id: str, address: str) -> None:
        super().__init__(
            message=f"Agent already registered: {agent_id} ({address})",
            code="AGENT_ALREADY_REGISTERED",
        )


class ListingNotActiveError(ConflictError):
    """Raised when a purchase is requested on a listing that is not active."""

    def __init__(self, listing_id: int, status: str) -> None:
        super().__init__(
            message=f"Listing {listing_id} is not active (status: {status})",
            code="LISTING_NOT_ACTIVE",
        )
        self.listing_id = listing_id
        self.status = status


class PurchaseInProgressError(ConflictError):
    """Raised when a listing already has a requested or confirmed transaction."""

    def __init__(self, listing_id: int, transaction_id: str | None = None) -> None:
        super().__init__(
            message=f"Purchase already in progress for listing {listing_id}",
            code="PURCHASE_IN_PROGRESS",
        )
        self.listing_id = listing_id
        self.transaction_id = transaction_id


class InvalidStateTransitionError(ConflictError):
    """Raised when an attempted state transition is not allowed.

    Example: sold -> active (sold is final).
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


# --- Bad Requests ---


class SelfPurchaseError(MarketplaceError):
    """Raised when the buyer address is the listing's seller."""

    def __init__(self, listing_id: int) -> None:
        super().__init__(
            message=f"Cannot purchase your own listing: {listing_id}",
            code="SELF_PURCHASE",
        )


class InvalidListingUpdateError(MarketplaceError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_LISTING_UPDATE")


# --- Ledger ---


class LedgerError(MarketplaceError):
    """Base exception for ledger (JSON-RPC node / contract) failures."""

    def __init__(self, message: str, code: str = "LEDGER_ERROR") -> None:
        super().__init__(message=message, code=code)


class LedgerUnavailableError(LedgerError):
    """Raised when the ledger cannot be reached or the contract is not configured."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="LEDGER_UNAVAILABLE")
