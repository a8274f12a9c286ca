"""
Facilitator HTTP client.

    POST {base_url}/payment
    X-PAYMENT: base64(JSON {from,to,value,validAfter,validBefore,nonce,v,r,s})
    body:      {token, originCorridor, destinationCorridor, metadata}

A 2xx JSON response carrying a settlement reference is a success. Anything
else (non-2xx, timeout, transport error, malformed body, missing reference)
is returned as a failed FacilitatorResult. submit() does not raise on
facilitator trouble so the engine can pick the fallback without nesting
handlers.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from afriflow.core.models import Authorization


logger = logging.getLogger(__name__)

PAYMENT_HEADER = "X-PAYMENT"

REFERENCE_FIELDS = ("transaction", "txHash", "settlementRef")


@dataclass
class FacilitatorResult:
    success:     bool
    reference:   Optional[str] = None
    status_code: Optional[int] = None
    error:       Optional[str] = None


class FacilitatorClient:

    def __init__(
        self,
        base_url: str,
        timeout:  float = 10.0,
        client:   Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout  = timeout
        self._client  = client or httpx.Client()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/payment"

    def submit(
        self,
        authorization: Authorization,
        token:         str,
        origin:        str,
        destination:   str,
        metadata:      str = "",
        timeout:       Optional[float] = None,
    ) -> FacilitatorResult:
        timeout = self.timeout if timeout is None else timeout
        body = {
            "token":               token,
            "originCorridor":      origin,
            "destinationCorridor": destination,
            "metadata":            metadata,
        }
        try:
            response = self._client.post(
                self.endpoint,
                json=body,
                headers={PAYMENT_HEADER: authorization.encode_header()},
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            return self._failed(f"timeout after {timeout}s: {exc}")
        except httpx.HTTPError as exc:
            return self._failed(f"transport error: {exc}")

        if not response.is_success:
            return self._failed(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError:
            return self._failed("malformed JSON response", status_code=response.status_code)
        if not isinstance(result, dict):
            return self._failed("response is not a JSON object", status_code=response.status_code)
        if result.get("success") is False:
            return self._failed(
                result.get("errorReason") or result.get("error") or "facilitator refused",
                status_code=response.status_code,
            )

        for name in REFERENCE_FIELDS:
            reference = result.get(name)
            if isinstance(reference, str) and reference:
                return FacilitatorResult(
                    success=     True,
                    reference=   reference,
                    status_code= response.status_code,
                )
        return self._failed("response has no settlement reference", status_code=response.status_code)

    def _failed(self, error: str, status_code: Optional[int] = None) -> FacilitatorResult:
        logger.warning("Facilitator %s failed: %s", self.endpoint, error)
        return FacilitatorResult(success=False, status_code=status_code, error=error)

    def close(self) -> None:
        self._client.close()
