"""
Error taxonomy for the Posters API.

Every error carries the HTTP status it maps to; main.py renders them as
``{"error": message}``.
"""


class StoreError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    status_code = 400


class AuthenticationError(StoreError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class AuthorizationError(StoreError):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(StoreError):
    status_code = 404


class UpstreamFailure(StoreError):
    status_code = 500


class BusinessRuleViolation(StoreError):
    status_code = 400


# Catalog
class PosterNotFound(NotFoundError):
    def __init__(self, message: str = "Poster not found"):
        super().__init__(message)


class InsufficientStock(BusinessRuleViolation):
    pass


# Coupons
class InvalidCoupon(BusinessRuleViolation):
    def __init__(self, message: str = "Invalid coupon code"):
        super().__init__(message)


class NotYetValid(BusinessRuleViolation):
    def __init__(self, message: str = "Coupon is not yet valid"):
        super().__init__(message)


class Expired(BusinessRuleViolation):
    def __init__(self, message: str = "Coupon has expired"):
        super().__init__(message)


class UsageLimitReached(BusinessRuleViolation):
    def __init__(self, message: str = "Coupon usage limit reached"):
        super().__init__(message)


class BelowMinimumPurchase(BusinessRuleViolation):
    def __init__(self, minimum):
        super().__init__(f"Minimum purchase amount is {minimum}")
        self.minimum = minimum


# Payments
class PaymentVerificationFailed(BusinessRuleViolation):
    def __init__(self, message: str = "Payment verification failed"):
        super().__init__(message)
