"""
Settlement error taxonomy.

Validation problems are accumulated as ValidationIssue entries (see app.schemas.settlement)
using the codes below; they are never raised one by one. Exceptions are used only where
processing must stop: a bad webhook signature or an unusable body.
"""


class SignatureInvalid(Exception):
    """Webhook signature missing or not matching the raw body. Nothing is processed or stored."""


class InvalidPayload(Exception):
    """Signed body that is not a usable event envelope (bad JSON, missing id/type)."""


# Issue codes (ValidationIssue.code)
INVALID_ID = "ValidationError"
ENTITY_NOT_FOUND = "EntityNotFound"
SELLER_MISMATCH = "SellerMismatch"
AMOUNT_MISMATCH = "AmountMismatch"
NEGATIVE_SETTLEMENT = "NegativeSettlement"
AFFILIATE_SKIPPED = "AffiliateSkipped"
PLATFORM_FEE_DEVIATION = "PlatformFeeDeviation"
