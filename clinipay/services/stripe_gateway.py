"""
Stripe API gateway.

Every call the payment backend makes to Stripe goes through this class:
payment intents, transfers, refunds, Connect accounts, onboarding links and
webhook signature verification. Stripe failures surface as
``ProviderException`` and are never swallowed here; callers decide whether a
failure is fatal (request paths) or retried later (payout sweep).
"""

import logging
from typing import Any, Dict, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import ProviderException, ServiceException, ValidationException
from .base import BaseService

logger = logging.getLogger(__name__)


def stripe_object_id(value: Any) -> Optional[str]:
    """Expandable fields arrive either as an id string or as an expanded object."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


class WebhookSignatureError(ValidationException):
    """Raised when a webhook payload does not carry a valid Stripe signature."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message, code="INVALID_SIGNATURE")


class StripeGateway:
    """Thin wrapper over the Stripe SDK with consistent error handling."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self.stripe_configured = False

        secret = settings.stripe_secret_key.get_secret_value()
        if secret:
            stripe.api_key = secret
            # 1 retry for transient network failures
            stripe.max_network_retries = 1
            self.stripe_configured = True
        else:
            self.logger.warning("Stripe secret key not configured - provider calls will fail")

    def _check_stripe_configured(self) -> None:
        if not self.stripe_configured:
            raise ServiceException("Stripe is not configured", code="STRIPE_NOT_CONFIGURED")

    def _provider_error(self, action: str, exc: Exception) -> ProviderException:
        self.logger.error(f"Stripe error during {action}: {str(exc)}")
        return ProviderException(
            f"Payment provider request failed: {action}",
            details={"provider_error": getattr(exc, "code", None) or type(exc).__name__},
        )

    # ========== Payment Intents ==========

    @BaseService.measure_operation("stripe_create_payment_intent")
    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> Any:
        self._check_stripe_configured()
        try:
            params: Dict[str, Any] = {
                "amount": amount_cents,
                "currency": currency,
                "metadata": metadata,
                "automatic_payment_methods": {"enabled": True},
            }
            if idempotency_key:
                params["idempotency_key"] = idempotency_key
            return stripe.PaymentIntent.create(**params)
        except stripe.StripeError as e:
            raise self._provider_error("create payment intent", e) from e

    @BaseService.measure_operation("stripe_retrieve_payment_intent")
    def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            raise self._provider_error("retrieve payment intent", e) from e

    @BaseService.measure_operation("stripe_cancel_payment_intent")
    def cancel_payment_intent(
        self, payment_intent_id: str, cancellation_reason: str = "requested_by_customer"
    ) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.PaymentIntent.cancel(
                payment_intent_id, cancellation_reason=cancellation_reason
            )
        except stripe.StripeError as e:
            raise self._provider_error("cancel payment intent", e) from e

    # ========== Transfers and Refunds ==========

    @BaseService.measure_operation("stripe_create_transfer")
    def create_transfer(
        self,
        *,
        amount_cents: int,
        currency: str,
        destination: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.Transfer.create(
                amount=amount_cents,
                currency=currency,
                destination=destination,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise self._provider_error("create transfer", e) from e

    @BaseService.measure_operation("stripe_create_refund")
    def create_refund(
        self,
        *,
        charge_id: str,
        amount_cents: int,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.Refund.create(
                charge=charge_id,
                amount=amount_cents,
                reason="requested_by_customer",
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise self._provider_error("create refund", e) from e

    # ========== Connect Accounts ==========

    @BaseService.measure_operation("stripe_create_connected_account")
    def create_connected_account(self, *, email: Optional[str], metadata: Dict[str, str]) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.Account.create(
                type="express",
                country=settings.stripe_connect_country,
                email=email,
                capabilities={"transfers": {"requested": True}},
                metadata=metadata,
            )
        except stripe.StripeError as e:
            raise self._provider_error("create connected account", e) from e

    @BaseService.measure_operation("stripe_create_account_link")
    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        except stripe.StripeError as e:
            raise self._provider_error("create account link", e) from e

    @BaseService.measure_operation("stripe_retrieve_account")
    def retrieve_account(self, account_id: str) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.Account.retrieve(account_id)
        except stripe.StripeError as e:
            raise self._provider_error("retrieve account", e) from e

    @BaseService.measure_operation("stripe_create_login_link")
    def create_login_link(self, account_id: str) -> Any:
        """Single-use Express dashboard login link for a connected account."""
        self._check_stripe_configured()
        try:
            return stripe.Account.create_login_link(account_id)
        except stripe.StripeError as e:
            raise self._provider_error("create login link", e) from e

    # ========== Webhooks ==========

    def verify_webhook_signature(self, payload: bytes, signature: str) -> None:
        """
        Verify a webhook payload against the configured signing secret.

        Raises:
            ServiceException: no signing secret configured
            WebhookSignatureError: signature missing, stale or wrong
        """
        secret = settings.stripe_webhook_secret.get_secret_value()
        if not secret:
            raise ServiceException("Webhook secret not configured", code="WEBHOOK_NOT_CONFIGURED")
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"Invalid webhook signature: {str(e)}")
            raise WebhookSignatureError() from e
        except ValueError as e:
            self.logger.warning(f"Invalid webhook payload: {str(e)}")
            raise WebhookSignatureError("Invalid webhook payload") from e
