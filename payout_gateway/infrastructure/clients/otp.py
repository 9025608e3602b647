"""OTP service HTTP client for withdrawal passcodes"""

import httpx
from payout_gateway.domain.exceptions import OtpChannelError
from payout_gateway.config import settings
from payout_gateway.infrastructure.observability.metrics import otp_failure_counter


class OtpClient:
    """Client for the external passcode delivery/verification service"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url or settings.otp_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def send(self, destination: str, purpose: str) -> str:
        """
        Deliver a 6-digit passcode and return the challenge id.

        Raises:
            OtpChannelError: On timeout, HTTP errors, or invalid response
        """
        data = self._post("/otp/send", {"destination": destination, "purpose": purpose})
        try:
            return str(data["challenge_id"])
        except (KeyError, TypeError) as e:
            otp_failure_counter.labels(operation="send").inc()
            raise OtpChannelError(f"Invalid response from OTP service: {e}") from e

    def verify(self, challenge_id: str, code: str) -> bool:
        """
        Check a passcode against its challenge.

        A wrong code is a normal False; only transport failures raise.
        """
        data = self._post("/otp/verify", {"challenge_id": challenge_id, "code": code})
        try:
            return bool(data["valid"])
        except (KeyError, TypeError) as e:
            otp_failure_counter.labels(operation="verify").inc()
            raise OtpChannelError(f"Invalid response from OTP service: {e}") from e

    def _post(self, path: str, payload: dict) -> dict:
        operation = path.rsplit("/", 1)[-1]
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = client.post(f"{self.base_url}{path}", json=payload)
                response.raise_for_status()
                return response.json()
            except httpx.TimeoutException as e:
                otp_failure_counter.labels(operation=operation).inc()
                raise OtpChannelError(f"OTP service timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                otp_failure_counter.labels(operation=operation).inc()
                raise OtpChannelError(f"OTP service error: {e.response.status_code}") from e
            except (httpx.RequestError, ValueError) as e:
                otp_failure_counter.labels(operation=operation).inc()
                raise OtpChannelError(f"OTP service unreachable: {e}") from e
