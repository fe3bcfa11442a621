from __future__ import annotations


class MarketError(Exception):
    """Base error rendered as ``{"ok": False, "message": ...}`` by the app."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None, **extra):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = int(status_code)
        self.extra = extra

    def to_dict(self) -> dict:
        return {"ok": False, "message": self.message, **self.extra}


class ValidationError(MarketError):
    status_code = 400


class AuthError(MarketError):
    status_code = 401


class ForbiddenError(MarketError):
    status_code = 403


class NotFoundError(MarketError):
    status_code = 404


class ConflictError(MarketError):
    status_code = 409


class InsufficientStockError(MarketError):
    status_code = 400

    def __init__(self, product_name: str, available: int):
        super().__init__(
            f'Insufficient stock for "{product_name}". Available: {int(available)}',
            product=product_name,
            available=int(available),
        )
        self.product_name = product_name
        self.available = int(available)


class InsufficientFundsError(MarketError):
    status_code = 400

    def __init__(self, available: float):
        super().__init__(f"Insufficient balance. Available: ${float(available):.2f}", available=round(float(available), 2))
        self.available = float(available)


class RefundIneligibleError(MarketError):
    status_code = 400


class FulfillmentError(MarketError):
    """Inventory or ledger state disagrees with what checkout promised."""

    status_code = 500


class ProviderError(MarketError):
    status_code = 502
