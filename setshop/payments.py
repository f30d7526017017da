from __future__ import annotations

import urllib.parse
from dataclasses import dataclass

import httpx

from .bundles import Bundle
from .constants import LOGGER, STRIPE_API_BASE_URL


class PaymentError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str | None
    payment_status: str
    client_reference_id: str | None
    bundle_id: str | None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @classmethod
    def from_payload(cls, payload: dict) -> "CheckoutSession":
        session_id = payload.get("id")
        if not isinstance(session_id, str) or not session_id:
            raise PaymentError("Checkout session response missing id.")
        metadata = payload.get("metadata") or {}
        return cls(
            session_id=session_id,
            url=payload.get("url"),
            payment_status=str(payload.get("payment_status") or "unpaid"),
            client_reference_id=payload.get("client_reference_id"),
            bundle_id=metadata.get("bundle_id") if isinstance(metadata, dict) else None,
        )


def build_success_url(base_url: str, bundle_id: str) -> str:
    # Stripe substitutes the literal {CHECKOUT_SESSION_ID} placeholder, so it must stay unescaped.
    quoted = urllib.parse.quote(bundle_id, safe="")
    return f"{base_url.rstrip('/')}/success?session_id={{CHECKOUT_SESSION_ID}}&bundle_id={quoted}"


class StripeCheckout:
    """Hosted checkout sessions through the Stripe REST API."""

    def __init__(
        self,
        secret_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = STRIPE_API_BASE_URL,
        timeout: float = 15.0,
        currency: str = "usd",
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {secret_key}"}
        self.currency = currency

    async def _request(self, method: str, path: str, *, data: dict | None = None) -> dict:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, data=data, headers=self._headers)
        except httpx.HTTPError as error:
            raise PaymentError(f"Stripe request failed: {error!r}") from error

        if response.status_code >= 400:
            try:
                message = response.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                message = response.text[:500]
            LOGGER.warning("Stripe error status=%s %s: %s", response.status_code, path, message)
            raise PaymentError(
                f"Stripe request failed with status {response.status_code}: {message}",
                status_code=response.status_code,
            )
        return response.json()

    async def create_session(
        self,
        bundle: Bundle,
        *,
        user_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        form = {
            "mode": "payment",
            "payment_method_types[0]": "card",
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": self.currency,
            "line_items[0][price_data][unit_amount]": str(bundle.price),
            "line_items[0][price_data][product_data][name]": f"Access to {bundle.name} Curation",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": user_id,
            "metadata[bundle_id]": bundle.bundle_id,
        }
        payload = await self._request("POST", "/checkout/sessions", data=form)
        session = CheckoutSession.from_payload(payload)
        if not session.url:
            raise PaymentError("Checkout session response missing url.")
        return session

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        quoted = urllib.parse.quote(session_id, safe="")
        payload = await self._request("GET", f"/checkout/sessions/{quoted}")
        return CheckoutSession.from_payload(payload)

    async def aclose(self) -> None:
        await self._client.aclose()
