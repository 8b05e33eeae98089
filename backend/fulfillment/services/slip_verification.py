# Overview: Outbound client for the bank-slip verification API (SlipOK-compatible).

"""
Slip Verification Client

POST {SLIP_VERIFY_API_URL}/verify
    headers: x-authorization: <api key>
    multipart: files=<slip image>, amount=<expected amount>

The API answers with a flat JSON object; amount and date field names vary
between API versions (amount/transferAmount, transDate/transferDate/date).

FAILURE MODEL:
- An HTTP error response carrying a JSON body is an answer: the slip was
  rejected (verified=False, error_code = HTTP status).
- Network failures, timeouts, missing API key, unreadable slip files and
  non-JSON bodies raise ExternalServiceError. payment_service records those
  as a failed verification; they never block an order or payment transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

import httpx
from flask import current_app

from ..errors import ExternalServiceError
from ..money import round2
from ..time_utils import parse_iso_datetime


SERVICE_NAME = "slip_verification"

AMOUNT_TOLERANCE = Decimal("0.01")

ERROR_AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
ERROR_VERIFICATION_FAILED = "VERIFICATION_FAILED"


@dataclass
class SlipVerificationResult:
    verified: bool
    amount: Decimal | None = None
    transfer_date: datetime | None = None
    raw: dict = field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None

    def to_payload(self) -> dict:
        """JSON-safe form stored on the payment."""
        return {
            "verified": self.verified,
            "amount": f"{self.amount:.2f}" if self.amount is not None else None,
            "transfer_date": self.transfer_date.isoformat() if self.transfer_date else None,
            "error": {"code": self.error_code, "message": self.error_message} if self.error_code else None,
            "raw_response": self.raw,
        }


def _first(data: dict, *keys):
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_amount(value) -> Decimal | None:
    if value is None:
        return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return round2(parsed) if parsed.is_finite() else None


def _parse_date(value) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        return None


def parse_verification_response(data: dict, expected_amount=None) -> SlipVerificationResult:
    """Normalize an API answer and apply the expected-amount check."""
    # Newer API versions wrap the slip fields in "data"
    fields = data.get("data") if isinstance(data.get("data"), dict) else data

    if not (data.get("success") or data.get("verified")):
        return SlipVerificationResult(
            verified=False,
            raw=data,
            error_code=str(data.get("code") or ERROR_VERIFICATION_FAILED),
            error_message=data.get("message") or "Slip verification failed",
        )

    amount = _parse_amount(_first(fields, "amount", "transferAmount"))
    transfer_date = _parse_date(_first(fields, "transDate", "transferDate", "date"))
    result = SlipVerificationResult(verified=True, amount=amount, transfer_date=transfer_date, raw=data)

    if expected_amount is not None:
        expected = round2(Decimal(str(expected_amount)))
        if amount is None:
            result.verified = False
            result.error_code = ERROR_AMOUNT_MISMATCH
            result.error_message = f"Amount mismatch: expected {expected:.2f}, slip amount missing"
        elif abs(amount - expected) >= AMOUNT_TOLERANCE:
            result.verified = False
            result.error_code = ERROR_AMOUNT_MISMATCH
            result.error_message = f"Amount mismatch: expected {expected:.2f}, got {amount:.2f}"

    return result


class SlipVerificationClient:
    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.api_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"x-authorization": self.api_key or ""},
        )

    def verify(self, slip_path: str, expected_amount=None) -> SlipVerificationResult:
        """
        Verify one slip image against the expected amount.

        Raises:
            ExternalServiceError: the service could not give an answer
        """
        if not self.api_key:
            raise ExternalServiceError(SERVICE_NAME, "Slip verification API key is not configured")

        try:
            image = Path(slip_path).read_bytes()
        except OSError as exc:
            raise ExternalServiceError(
                SERVICE_NAME, "Slip image could not be read", details={"slip_path": slip_path}
            ) from exc

        form = {}
        if expected_amount is not None:
            form["amount"] = f"{round2(Decimal(str(expected_amount))):.2f}"

        try:
            with self._client() as client:
                response = client.post(
                    "/verify",
                    files={"files": ("slip.jpg", image, "image/jpeg")},
                    data=form,
                )
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(SERVICE_NAME, "Slip verification timed out") from exc
        except httpx.RequestError as exc:
            raise ExternalServiceError(
                SERVICE_NAME, "No response from slip verification service", details={"error": str(exc)}
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalServiceError(
                SERVICE_NAME,
                "Malformed response from slip verification service",
                details={"status_code": response.status_code},
            ) from exc
        if not isinstance(data, dict):
            raise ExternalServiceError(
                SERVICE_NAME,
                "Malformed response from slip verification service",
                details={"status_code": response.status_code},
            )

        if response.is_error:
            return SlipVerificationResult(
                verified=False,
                raw=data,
                error_code=str(response.status_code),
                error_message=data.get("message") or "Verification failed",
            )

        return parse_verification_response(data, expected_amount)

    def check_status(self) -> dict:
        """Availability probe used by /health."""
        if not self.api_key:
            return {"available": False, "error": "API key not configured"}
        try:
            with self._client() as client:
                response = client.get("/status", timeout=5.0)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            return {"available": False, "error": str(exc)}
        return {"available": True}


def get_slip_verifier() -> SlipVerificationClient:
    return current_app.extensions["slip_verifier"]
