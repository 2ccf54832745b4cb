class CartError(Exception):
    """Base class for failures raised by the cart services."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CartValidationError(CartError):
    """Malformed or out-of-range input (missing variant, non-positive quantity...)."""


class CartUnauthorized(CartError):
    """No owner key could be resolved for the request."""


class CartItemNotFound(CartError):
    """The line does not exist, or belongs to another owner."""

    def __init__(self, message: str = "Cart item not found"):
        super().__init__(message)


class CartStoreError(CartError):
    """The database rejected or failed an operation."""


class CartMergeFailure(CartError):
    """Folding a guest cart into a user cart failed and was rolled back."""
