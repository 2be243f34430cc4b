"""Application-wide constants for the clinipay payment backend."""

BRAND_NAME = "MediBook"

# Commission
DEFAULT_COMMISSION_PERCENTAGE = 5.0
MIN_COMMISSION_PERCENTAGE = 1.0
MAX_COMMISSION_PERCENTAGE = 10.0
COMMISSION_CONFIG_KEY = "commission"

# Cancellation refund windows (hours before appointment start)
FULL_REFUND_HOURS = 24
PARTIAL_REFUND_HOURS = 1

# Connected account onboarding links stay valid for a day
ONBOARDING_LINK_TTL_HOURS = 24

# Webhook ledger
WEBHOOK_SOURCE_STRIPE = "stripe"
MAX_WEBHOOK_ERROR_LENGTH = 2000

# Query limits
DEFAULT_PAYOUT_BATCH_SIZE = 50
