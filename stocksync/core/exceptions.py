class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class ProductNotFoundError(BaseServiceError):
    """Raised when a product is not found by SKU."""
    pass

class StoreNotFoundError(BaseServiceError):
    """Raised when a store replica is not found by domain."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for platform service errors."""
    pass

class ShopifyServiceError(PlatformServiceError):
    """Base exception for Shopify-specific errors."""
    pass

class ShopifyAPIError(ShopifyServiceError):
    """Raised when Shopify API calls fail at the transport or HTTP level."""
    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)

class ShopifyGraphQLError(ShopifyServiceError):
    """Raised when a GraphQL response carries top-level errors."""
    def __init__(self, errors):
        self.errors = errors
        message = "GraphQL query failed with errors:\n"
        for error in errors:
            msg = error.get('message', 'Unknown error')
            path = error.get('path', [])
            message += f"- Message: {msg}, Path: {path}\n"
        super().__init__(message)

class ShopifyUserError(ShopifyServiceError):
    """Raised when a mutation returns userErrors."""
    def __init__(self, user_errors):
        self.user_errors = user_errors
        messages = "; ".join(e.get("message", "Unknown error") for e in user_errors)
        super().__init__(f"Mutation rejected: {messages}")

class ConflictResolutionError(BaseServiceError):
    """Raised when a conflict cannot be resolved automatically."""
    pass

class WebhookValidationError(BaseServiceError):
    """Raised when an inbound webhook is malformed."""
    pass

class ShopifyTransientError(ShopifyAPIError):
    """Raised on throttling, 5xx responses and network failures. Safe to retry."""
    pass
