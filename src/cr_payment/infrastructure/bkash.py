"""bKash tokenized checkout client.

Two calls per checkout:
  1. POST {base}/checkout/token/grant with the merchant username / password
     headers and app key / secret body -> id_token
  2. POST {base}/checkout/create with the id_token -> paymentID + bkashURL

The paymentID is the payment session token the callback later reports.
"""

import logging

import httpx

from config.settings import settings
from src.cr_common.errors import PaymentProviderError
from src.cr_payment.domain.models import CheckoutSession

logger = logging.getLogger(__name__)

_SUCCESS_STATUS = "0000"


class BkashPaymentProvider:
    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        app_key: str | None = None,
        app_secret: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.BKASH_BASE_URL).rstrip("/")
        self._username = username if username is not None else settings.BKASH_USERNAME
        self._password = password if password is not None else settings.BKASH_PASSWORD
        self._app_key = app_key if app_key is not None else settings.BKASH_APP_KEY
        self._app_secret = app_secret if app_secret is not None else settings.BKASH_APP_SECRET
        self._timeout = timeout or settings.BKASH_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        )

    async def create_checkout(
        self,
        account_id: str,
        amount: int,
        callback_url: str,
        invoice_number: str,
    ) -> CheckoutSession:
        if not all((self._username, self._password, self._app_key, self._app_secret)):
            raise PaymentProviderError("bKash credentials are not configured")

        try:
            async with self._client() as client:
                id_token = await self._grant_token(client)
                response = await client.post(
                    "/checkout/create",
                    headers={"Authorization": id_token, "X-APP-Key": self._app_key},
                    json={
                        "mode": "0011",
                        "payerReference": account_id,
                        "callbackURL": callback_url,
                        "amount": str(amount),
                        "currency": "BDT",
                        "intent": "sale",
                        "merchantInvoiceNumber": invoice_number,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("bKash create failed for %s: %s", invoice_number, exc)
            raise PaymentProviderError(str(exc)) from exc
        except ValueError as exc:
            raise PaymentProviderError("bKash returned a non-JSON response") from exc

        payment_id = data.get("paymentID")
        redirect_url = data.get("bkashURL")
        if data.get("statusCode", _SUCCESS_STATUS) != _SUCCESS_STATUS or not payment_id or not redirect_url:
            message = data.get("statusMessage") or data.get("errorMessage") or "no payment URL"
            logger.warning("bKash rejected checkout %s: %s", invoice_number, message)
            raise PaymentProviderError(message)

        logger.info("bKash checkout created: invoice=%s payment_id=%s", invoice_number, payment_id)
        return CheckoutSession(payment_id=payment_id, redirect_url=redirect_url)

    async def _grant_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            "/checkout/token/grant",
            headers={"username": self._username, "password": self._password},
            json={"app_key": self._app_key, "app_secret": self._app_secret},
        )
        response.raise_for_status()
        id_token = response.json().get("id_token")
        if not id_token:
            raise PaymentProviderError("bKash token grant returned no id_token")
        return str(id_token)
