"""
Payment lifecycle tests.

Verifies:
- Manual payments and slip uploads
- Confirmation is idempotent (one receipt number, one receipt job)
- Verification results confirm or fail the payment
- Slip service outages are recorded, never raised
- Receipt render failures leave the payment confirmed and stay retryable
"""

from decimal import Decimal
from pathlib import Path

import httpx
import pytest

from fulfillment.errors import InvalidStatusTransition, NotFoundError, ValidationError
from fulfillment.models import DocumentSequence, Order, Payment, ReceiptJob
from fulfillment.services import order_service, payment_service, receipt_service
from fulfillment.services.slip_verification import SlipVerificationClient, SlipVerificationResult


@pytest.fixture(scope='function')
def order(make_cart, product):
    """Pending order for 2 x Widget plus 50 shipping (total 264.00)."""
    cart = make_cart([(product, 2)])
    return order_service.create_order_from_cart(cart.id, shipping_cost="50", guest_phone="0812345678")


@pytest.fixture(scope='function')
def slip_file(tmp_path):
    path = tmp_path / "slip.jpg"
    path.write_bytes(b"\xff\xd8\xff fake jpeg")
    return str(path)


def _verifier(handler):
    return SlipVerificationClient(
        api_url="https://slips.test/api/v1",
        api_key="test-key",
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# PAYMENT CREATION
# =============================================================================


class TestCreatePayment:

    def test_amount_defaults_to_order_total(self, order):
        payment = payment_service.create_payment(order.id, payment_method="cash")
        assert payment.amount == Decimal("264.00")
        assert payment.status == "pending"
        assert payment.order.payment_method == "cash"

    def test_second_payment_rejected(self, order):
        payment_service.create_payment(order.id)
        with pytest.raises(ValidationError):
            payment_service.create_payment(order.id)

    def test_unknown_method(self, order):
        with pytest.raises(ValidationError):
            payment_service.create_payment(order.id, payment_method="bitcoin")

    def test_cancelled_order(self, order):
        order_service.cancel_order(order.id)
        with pytest.raises(InvalidStatusTransition):
            payment_service.create_payment(order.id)

    def test_latest_payment_missing(self, order):
        with pytest.raises(NotFoundError):
            payment_service.get_latest_payment_for_order(order.id)


class TestUploadSlip:

    def test_first_upload_creates_pending_payment(self, order, slip_file):
        payment = payment_service.upload_slip(order.id, slip_file)
        assert payment.payment_method == "bank_transfer"
        assert payment.slip_image_path == slip_file
        assert payment.amount == Decimal("264.00")

    def test_reupload_after_failure_resets_verification(self, order, slip_file):
        payment = payment_service.upload_slip(order.id, slip_file)
        payment_service.ingest_verification(
            payment.id, SlipVerificationResult(verified=False, error_code="1012", error_message="Bad slip")
        )

        again = payment_service.upload_slip(order.id, "/slips/second.jpg")
        assert again.id == payment.id
        assert again.status == "pending"
        assert again.verification_response is None
        assert again.slip_image_path == "/slips/second.jpg"

    def test_upload_after_verified_rejected(self, order, slip_file, text_renderer):
        payment = payment_service.upload_slip(order.id, slip_file)
        payment_service.confirm_payment(payment.id, renderer=text_renderer)

        with pytest.raises(InvalidStatusTransition):
            payment_service.upload_slip(order.id, slip_file)


# =============================================================================
# CONFIRMATION
# =============================================================================


class TestConfirmPayment:

    def test_confirm_marks_order_paid_and_renders(self, db_session, order, text_renderer):
        payment = payment_service.create_payment(order.id)
        payment = payment_service.confirm_payment(payment.id, renderer=text_renderer)

        assert payment.status == "verified"
        assert payment.receipt_number.startswith("RCP-")
        assert payment.payment_date is not None
        reloaded = db_session.get(Order, order.id)
        assert reloaded.status == "paid"
        assert reloaded.payment_status == "paid"

        assert payment.receipt_job.status == "succeeded"
        receipt_text = Path(payment.receipt_file_path).read_text(encoding="utf-8")
        assert payment.receipt_number in receipt_text
        assert reloaded.order_number in receipt_text

    def test_confirm_twice_keeps_one_receipt(self, db_session, order, text_renderer):
        payment = payment_service.create_payment(order.id)
        first = payment_service.confirm_payment(payment.id, renderer=text_renderer).receipt_number
        second = payment_service.confirm_payment(payment.id, renderer=text_renderer).receipt_number

        assert first == second
        assert db_session.query(ReceiptJob).count() == 1
        assert db_session.query(DocumentSequence).filter_by(document_type="RECEIPT").one().next_number == 2

    def test_confirm_does_not_regress_advanced_order(self, db_session, order, text_renderer):
        payment = payment_service.create_payment(order.id)
        order_service.update_order_status(order.id, "paid")
        order_service.update_order_status(order.id, "packing")

        payment_service.confirm_payment(payment.id, renderer=text_renderer)
        assert db_session.get(Order, order.id).status == "packing"

    def test_confirm_on_cancelled_order_rejected(self, db_session, order, text_renderer):
        payment = payment_service.create_payment(order.id)
        order_service.cancel_order(order.id)

        with pytest.raises(InvalidStatusTransition):
            payment_service.confirm_payment(payment.id, renderer=text_renderer)
        assert db_session.get(Payment, payment.id).receipt_number is None

    def test_render_failure_keeps_confirmation(self, db_session, order, failing_renderer, text_renderer, caplog):
        payment = payment_service.create_payment(order.id)
        payment = payment_service.confirm_payment(payment.id, renderer=failing_renderer)

        assert payment.status == "verified"
        assert payment.receipt_number is not None
        assert db_session.get(Order, order.id).payment_status == "paid"

        job = payment.receipt_job
        assert job.status == "failed"
        assert job.attempts == 1
        assert "No space left on device" in job.last_error
        assert "Failed to render receipt" in caplog.text

        summary = receipt_service.retry_receipt_jobs(renderer=text_renderer)
        assert summary == {"attempted": 1, "succeeded": [job.id], "failed": []}
        assert db_session.get(Payment, payment.id).receipt_file_path is not None

    def test_succeeded_job_is_not_rendered_again(self, order, failing_renderer, text_renderer):
        payment = payment_service.create_payment(order.id)
        payment = payment_service.confirm_payment(payment.id, renderer=text_renderer)

        job = receipt_service.process_receipt_job(payment.receipt_job.id, renderer=failing_renderer)
        assert job.status == "succeeded"
        assert failing_renderer.calls == 0

    def test_delete_payment_removes_job(self, db_session, order, text_renderer):
        payment = payment_service.create_payment(order.id)
        payment_service.confirm_payment(payment.id, renderer=text_renderer)

        payment_service.delete_payment(payment.id)
        assert db_session.query(Payment).count() == 0
        assert db_session.query(ReceiptJob).count() == 0


# =============================================================================
# VERIFICATION
# =============================================================================


class TestVerification:

    def test_verified_result_confirms(self, db_session, order, slip_file, text_renderer):
        payment = payment_service.upload_slip(order.id, slip_file)
        result = SlipVerificationResult(verified=True, amount=Decimal("264.00"), raw={"success": True})

        payment = payment_service.ingest_verification(payment.id, result, renderer=text_renderer)

        assert payment.slip_verified is True
        assert payment.verified_at is not None
        assert payment.receipt_number is not None
        assert payment.verification_payload["verified"] is True
        assert db_session.get(Order, order.id).status == "paid"

    def test_rejected_result_fails_payment(self, db_session, order, slip_file):
        payment = payment_service.upload_slip(order.id, slip_file)
        result = SlipVerificationResult(verified=False, raw={"code": 1012}, error_code="1012", error_message="Duplicate slip")

        payment = payment_service.ingest_verification(payment.id, result)

        assert payment.status == "failed"
        assert payment.receipt_number is None
        assert payment.verification_payload["error"] == {"code": "1012", "message": "Duplicate slip"}
        assert db_session.get(Order, order.id).status == "pending"

    def test_verified_slip_after_cancellation_is_kept_as_failed(self, db_session, order, slip_file, text_renderer):
        payment = payment_service.upload_slip(order.id, slip_file)
        order_service.cancel_order(order.id)
        result = SlipVerificationResult(verified=True, amount=Decimal("264.00"), raw={"success": True})

        payment = payment_service.ingest_verification(payment.id, result, renderer=text_renderer)

        assert payment.status == "failed"
        assert payment.slip_verified is True
        assert payment.receipt_number is None
        assert payment.verified_amount == Decimal("264.00")
        assert payment.verification_payload["raw_response"] == {"success": True}
        assert payment.verification_payload["error"]["code"] == payment_service.ERROR_ORDER_CANCELLED
        assert db_session.get(Order, order.id).status == "cancelled"
        assert db_session.query(ReceiptJob).count() == 0

    def test_verify_slip_through_service(self, db_session, order, slip_file, text_renderer):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("x-authorization")
            return httpx.Response(
                200,
                json={"success": True, "data": {"amount": 264, "transDate": "2026-10-18T10:15:00+07:00"}},
            )

        payment = payment_service.upload_slip(order.id, slip_file)
        payment = payment_service.verify_slip(payment.id, verifier=_verifier(handler), renderer=text_renderer)

        assert seen == {"url": "https://slips.test/api/v1/verify", "auth": "test-key"}
        assert payment.status == "verified"
        assert payment.verified_amount == Decimal("264.00")
        assert payment.transfer_date.hour == 3
        assert db_session.get(Order, order.id).payment_status == "paid"

    def test_amount_mismatch_fails(self, order, slip_file):
        def handler(request):
            return httpx.Response(200, json={"success": True, "amount": 100})

        payment = payment_service.upload_slip(order.id, slip_file)
        payment = payment_service.verify_slip(payment.id, verifier=_verifier(handler))

        assert payment.status == "failed"
        assert payment.verification_payload["error"]["code"] == "AMOUNT_MISMATCH"

    def test_service_outage_recorded_as_failure(self, db_session, order, slip_file, caplog):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        payment = payment_service.upload_slip(order.id, slip_file)
        payment = payment_service.verify_slip(payment.id, verifier=_verifier(handler))

        assert payment.status == "failed"
        assert payment.verification_payload["error"]["code"] == payment_service.SERVICE_UNAVAILABLE
        assert db_session.get(Order, order.id).status == "pending"
        assert "Slip verification unavailable" in caplog.text

    def test_payment_without_slip(self, order):
        payment = payment_service.create_payment(order.id, payment_method="cash")
        with pytest.raises(ValidationError):
            payment_service.verify_slip(payment.id, verifier=_verifier(lambda request: httpx.Response(200)))

    def test_list_payments_by_verification(self, order, slip_file, text_renderer):
        payment = payment_service.upload_slip(order.id, slip_file)
        payment_service.ingest_verification(
            payment.id, SlipVerificationResult(verified=True, amount=Decimal("264.00")), renderer=text_renderer
        )

        verified, pagination = payment_service.list_payments(verified=True)
        assert [p.id for p in verified] == [payment.id]
        assert pagination["total"] == 1
        assert payment_service.list_payments(verified=False)[1]["total"] == 0
