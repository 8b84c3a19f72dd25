class StorefrontError(Exception):
    """Base class for errors raised by the storefront's own logic."""


class OrderValidationError(StorefrontError):
    def __init__(self, message, fields=None):
        super().__init__(message)
        self.fields = list(fields or [])


class InvalidStatusTransition(StorefrontError):
    def __init__(self, current, requested):
        super().__init__(f"Cannot move order from {current} to {requested}")
        self.current = current
        self.requested = requested


class InvalidNavigation(StorefrontError):
    pass
