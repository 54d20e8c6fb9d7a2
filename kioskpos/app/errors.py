"""
Ledger exceptions.

All of them are raised before the first write of an operation, so callers can
map them straight to 4xx responses. Storage failures are not wrapped: they abort
the surrounding transaction and propagate as-is.
"""


class LedgerError(ValueError):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ItemNotFound(LedgerError):
    status_code = 404

    def __init__(self, item_id):
        super().__init__(f"item not found: {item_id}")
        self.item_id = item_id


class SaleNotFound(LedgerError):
    status_code = 404

    def __init__(self, sale_id):
        super().__init__(f"sale not found: {sale_id}")
        self.sale_id = sale_id


class PurchaseNotFound(LedgerError):
    status_code = 404


class InvalidQuantity(LedgerError):
    pass


class InvalidPrice(LedgerError):
    pass


class MissingPaymentMethod(LedgerError):
    def __init__(self, detail: str = "payment method is required"):
        super().__init__(detail)


class InvalidPaymentMethod(LedgerError):
    pass


class CreditCustomerRequired(LedgerError):
    def __init__(self, detail: str = "credit sale requires a customer name"):
        super().__init__(detail)


class InvalidReason(LedgerError):
    pass


class InvalidPurchase(LedgerError):
    pass
