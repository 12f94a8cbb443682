"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth / webhook authentication
  2xxx: Ledger (accounts, entries, usage)
  3xxx: Payments (packages, pending purchases, provider)
  4xxx: Feature providers (OCR, text refine)
  9xxx: System

`retryable` tells adapters and webhook callers whether repeating the same
request may succeed. Only storage / upstream availability problems are.
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
        retryable: bool = False,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        self.retryable = retryable
        super().__init__(message)


# --- 1xxx: Auth ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Invalid or expired token", 401)


class WebhookAuthError(AppError):
    def __init__(self) -> None:
        super().__init__(1006, "Webhook secret missing or invalid", 401)


# --- 2xxx: Ledger ---

class InsufficientBalanceError(AppError):
    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            2001,
            f"Insufficient credits: required {required}, available {available}. "
            "Add more credits to continue.",
            422,
        )


class AccountNotFoundError(AppError):
    def __init__(self, account_id: str) -> None:
        super().__init__(2002, f"Account not found: {account_id}", 404)


class AccountInactiveError(AppError):
    def __init__(self, account_id: str) -> None:
        super().__init__(2003, f"Account is deactivated: {account_id}", 403)


class IdempotencyConflictError(AppError):
    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            2004,
            f"Idempotency key already used for a different operation: {idempotency_key}",
            409,
        )


class InvalidAmountError(AppError):
    def __init__(self, kind: str, amount: int) -> None:
        super().__init__(2005, f"Invalid amount {amount} for entry kind {kind}", 422)


class UsageChargeNotFoundError(AppError):
    def __init__(self, request_id: str) -> None:
        super().__init__(2006, f"No usage charge found for request {request_id}", 404)


# --- 3xxx: Payments ---

class PackageNotFoundError(AppError):
    def __init__(self, package_id: str) -> None:
        super().__init__(3001, f"Credit package not found: {package_id}", 404)


class PendingPurchaseNotFoundError(AppError):
    def __init__(self, payment_id: str) -> None:
        super().__init__(3002, f"No pending purchase for payment {payment_id}", 404)


class PaymentProviderError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3003, f"Payment provider error: {detail}", 502, retryable=True)


# --- 4xxx: Feature providers ---

class FeatureProviderError(AppError):
    """Raised by an OCR / refine provider when the invocation confirmably failed."""

    def __init__(self, feature: str, detail: str) -> None:
        self.feature = feature
        super().__init__(4001, f"{feature} failed: {detail}", 502)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class LedgerUnavailableError(AppError):
    def __init__(self, detail: str = "Ledger storage unavailable") -> None:
        super().__init__(9003, detail, 503, retryable=True)
