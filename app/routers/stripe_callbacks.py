"""
Stripe callback endpoints.

- POST /api/v1/public/stripe-invoice-payment-failed: signed webhook
- GET /stripe/checkout-completed/{session_id}: browser redirect after Checkout
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse, Response

from app.config import BillingConfig
from app.correlation import get_request_id
from billing.checkout import billing_page_url, complete_checkout, settings_error_url
from billing.service import BillingGateway
from billing.webhooks import handle_invoice_payment_failed, verify_webhook

_logger = logging.getLogger(__name__)

router = APIRouter(tags=["stripe"])


def get_billing_gateway(request: Request) -> BillingGateway:
    """Gateway built at startup (see app.main.create_app)."""
    return request.app.state.billing_gateway


def get_billing_config(gateway: BillingGateway = Depends(get_billing_gateway)) -> BillingConfig:
    return gateway.config


@router.post("/api/v1/public/stripe-invoice-payment-failed")
async def stripe_invoice_payment_failed(
    raw_request: Request,
    config: BillingConfig = Depends(get_billing_config),
):
    """
    Handle the invoice.payment_failed webhook.

    Verification errors are not caught here; the app-level WebhookError
    handler turns them into a 400 so Stripe retries.
    """
    payload = await raw_request.body()
    signature = raw_request.headers.get("stripe-signature")

    event = verify_webhook(payload, signature, config.stripe_endpoint_secret)
    handle_invoice_payment_failed(event, config)

    return Response(status_code=200)


@router.get("/stripe/checkout-completed/{session_id}")
async def stripe_checkout_completed(
    session_id: str,
    raw_request: Request,
    gateway: BillingGateway = Depends(get_billing_gateway),
):
    """
    Finish a Checkout flow and send the browser back to the app.

    Always redirects: to the team billing page on success, otherwise to
    the settings page with the error message.
    """
    request_id = get_request_id(raw_request) or "unknown"
    config = gateway.config

    try:
        team, failure = await complete_checkout(gateway, session_id)
    except Exception as e:
        _logger.exception(
            f"Checkout completion failed: {e}",
            extra={"request_id": request_id, "session_id": session_id},
        )
        return RedirectResponse(settings_error_url(config, str(e) or type(e).__name__), status_code=302)

    if failure:
        _logger.warning(
            f"Checkout completion rejected: {failure.message}",
            extra={"request_id": request_id, "session_id": session_id, "kind": failure.kind.value},
        )
        return RedirectResponse(settings_error_url(config, failure.message), status_code=302)

    return RedirectResponse(billing_page_url(config, team), status_code=302)
