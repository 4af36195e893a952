"""T-Bank acquiring API client (refunds via the Cancel method)."""

import hashlib
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from avatarium.services.exceptions import RefundNetworkError, RefundRejectedError

logger = structlog.get_logger(__name__)


def generate_token(params: dict[str, Any], password: str) -> str:
    """Sign a request the way T-Bank expects.

    Root-level scalar parameters plus Password are sorted by key, their values
    concatenated, and the result hashed with SHA-256. Nested objects (Receipt,
    DATA) and Token itself are excluded.
    """
    values = {
        key: value
        for key, value in params.items()
        if key != "Token" and not isinstance(value, (dict, list))
    }
    values["Password"] = password

    concatenated = "".join(_stringify(values[key]) for key in sorted(values))
    return hashlib.sha256(concatenated.encode("utf-8")).hexdigest()


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class RefundResult:
    refund_id: Optional[str]
    status: Optional[str]


class TBankClient:
    """Refund adapter over the T-Bank acquiring API."""

    def __init__(
        self,
        terminal_key: str,
        password: str,
        api_url: str = "https://securepay.tinkoff.ru/v2",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize T-Bank client.

        Args:
            terminal_key: Terminal key from the merchant dashboard
            password: Terminal password used for request signing
            api_url: API base URL
            transport: Optional httpx transport (tests)
        """
        self.terminal_key = terminal_key
        self._password = password
        self.api_url = api_url.rstrip("/")
        self._transport = transport

    async def refund(self, provider_payment_id: str, amount_minor_units: int) -> RefundResult:
        """Refund a payment in full through the Cancel method.

        Args:
            provider_payment_id: T-Bank PaymentId
            amount_minor_units: Amount to return, in kopecks

        Returns:
            RefundResult with T-Bank's payment id and new status

        Raises:
            RefundRejectedError: Missing configuration or T-Bank answered Success=false
            RefundNetworkError: Timeout, connection failure or 5xx
        """
        if not self.terminal_key or not self._password:
            raise RefundRejectedError("TBANK_TERMINAL_KEY / TBANK_PASSWORD not configured")

        params: dict[str, Any] = {
            "TerminalKey": self.terminal_key,
            "PaymentId": provider_payment_id,
            "Amount": amount_minor_units,
        }
        params["Token"] = generate_token(params, self._password)

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(f"{self.api_url}/Cancel", json=params)
        except httpx.TimeoutException as e:
            raise RefundNetworkError(f"Request timeout after 30s: {e}") from e
        except httpx.HTTPError as e:
            raise RefundNetworkError(f"Network error: {e}") from e

        if response.status_code >= 500:
            raise RefundNetworkError(
                f"Service unavailable ({response.status_code}): {response.text}"
            )
        if response.status_code >= 400:
            raise RefundRejectedError(f"Bad request ({response.status_code}): {response.text}")

        data = response.json()
        if not data.get("Success"):
            raise RefundRejectedError(
                f"Cancel rejected: ErrorCode={data.get('ErrorCode')} "
                f"{data.get('Message', '')} {data.get('Details', '')}".strip()
            )

        logger.info(
            "tbank.cancel_succeeded",
            payment_id=provider_payment_id,
            status=data.get("Status"),
        )
        payment_id = data.get("PaymentId")
        return RefundResult(
            refund_id=str(payment_id) if payment_id is not None else None,
            status=data.get("Status"),
        )
