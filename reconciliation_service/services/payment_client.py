"""
HTTP Client for the payment provider (Mercado Pago) with retry logic

The webhook only tells us that something happened to a payment id. Status,
amount and order reference are always read from here.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from reconciliation_service.config import Settings

logger = structlog.get_logger(__name__)


APPROVED_STATUSES = frozenset({"approved"})
UNSUCCESSFUL_STATUSES = frozenset({"rejected", "cancelled", "refunded", "charged_back"})
NON_TERMINAL_STATUSES = frozenset({"pending", "in_process", "authorized", "in_mediation"})


class PaymentProviderError(Exception):
    """Base exception for payment provider errors"""

    retryable = False


class PaymentNotFoundError(PaymentProviderError):
    """Payment not found at the provider"""
    pass


class PaymentProviderUnavailableError(PaymentProviderError):
    """Provider timed out, refused the connection or answered 5xx"""

    retryable = True


class RefundFailedError(PaymentProviderError):
    """Refund was not confirmed by the provider"""
    pass


@dataclass
class VerifiedPayment:
    """Authoritative payment state as reported by the provider API"""
    payment_id: str
    status: str
    external_reference: Optional[str]
    transaction_amount: Optional[Decimal] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.status in APPROVED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in APPROVED_STATUSES or self.status in UNSUCCESSFUL_STATUSES


class MercadoPagoClient:
    """Client for the provider's authenticated payments API"""

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = settings.MERCADOPAGO_API_URL.rstrip("/")
        self.access_token = settings.MERCADOPAGO_ACCESS_TOKEN
        self.timeout = settings.PROVIDER_TIMEOUT_SECONDS
        self.refund_timeout = settings.REFUND_TIMEOUT_SECONDS
        self.max_retries = settings.MAX_RETRIES
        self.retry_delay = settings.RETRY_DELAY
        self.transport = transport

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )

    def fetch_payment_status(self, payment_id: str) -> VerifiedPayment:
        """
        Get the current status of a payment from the provider

        Every call goes to the provider; a verdict is never cached because the
        status can move between retries (e.g. pending -> approved).

        Args:
            payment_id: Provider payment id taken from the notification

        Returns:
            VerifiedPayment

        Raises:
            PaymentNotFoundError: If the provider does not know the payment
            PaymentProviderUnavailableError: If the provider is unreachable or failing
            PaymentProviderError: For any other unexpected response
        """
        fetch = retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=10),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
            reraise=True,
        )(self._get_payment)

        try:
            response = fetch(payment_id)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            logger.warning("provider_unreachable", payment_id=payment_id, error=str(e))
            raise PaymentProviderUnavailableError(f"Payment provider unavailable: {e}")
        except httpx.HTTPError as e:
            raise PaymentProviderUnavailableError(f"Payment provider transport error: {e}")

        if response.status_code == 200:
            return self._to_verified_payment(payment_id, response.json())
        elif response.status_code == 404:
            raise PaymentNotFoundError(f"Payment {payment_id} not found at provider")
        elif response.status_code >= 500:
            raise PaymentProviderUnavailableError(
                f"Payment provider error: status {response.status_code}"
            )
        else:
            raise PaymentProviderError(f"Unexpected status code: {response.status_code}")

    def _get_payment(self, payment_id: str) -> httpx.Response:
        with self._client(self.timeout) as client:
            return client.get(f"/v1/payments/{payment_id}")

    @staticmethod
    def _to_verified_payment(payment_id: str, data: Dict[str, Any]) -> VerifiedPayment:
        reference = data.get("external_reference")
        amount = data.get("transaction_amount")
        return VerifiedPayment(
            payment_id=str(data.get("id", payment_id)),
            status=str(data.get("status", "")).lower(),
            external_reference=str(reference) if reference not in (None, "") else None,
            transaction_amount=Decimal(str(amount)) if amount is not None else None,
            raw=data,
        )

    def refund_payment(self, payment_id: str, idempotency_key: str) -> Dict[str, Any]:
        """
        Request a full refund of a payment

        Not retried automatically: a refund that timed out may still have been
        executed, so the operator retries with the same idempotency key.

        Raises:
            RefundFailedError: On timeout, transport error or non-2xx response
        """
        try:
            with self._client(self.refund_timeout) as client:
                response = client.post(
                    f"/v1/payments/{payment_id}/refunds",
                    json={},
                    headers={"X-Idempotency-Key": idempotency_key},
                )
        except httpx.TimeoutException as e:
            raise RefundFailedError(f"Refund for payment {payment_id} timed out: {e}")
        except httpx.HTTPError as e:
            raise RefundFailedError(f"Refund for payment {payment_id} failed: {e}")

        if response.status_code not in (200, 201):
            raise RefundFailedError(
                f"Refund for payment {payment_id} rejected: status {response.status_code}"
            )

        logger.info("refund_confirmed", payment_id=payment_id)
        return response.json()
