from .service import (
    CREATE_ENDPOINT,
    InvalidPaymentIntentState,
    PaymentIntent,
    PaymentIntentNotFound,
    PaymentIntentService,
    PaymentValidationError,
)

__all__ = [
    "CREATE_ENDPOINT",
    "InvalidPaymentIntentState",
    "PaymentIntent",
    "PaymentIntentNotFound",
    "PaymentIntentService",
    "PaymentValidationError",
]
