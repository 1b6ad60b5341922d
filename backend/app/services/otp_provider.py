"""OTP delivery and checking through the Twilio Verify REST API."""

import logging

import httpx

logger = logging.getLogger(__name__)

VERIFY_BASE_URL = "https://verify.twilio.com/v2"


class OtpProviderError(Exception):
    """Provider failure with the HTTP status and provider error code when known."""

    def __init__(self, message: str, status: int | None = None, code: int | None = None):
        super().__init__(message)
        self.status = status
        self.code = code


class TwilioVerifyProvider:
    def __init__(self, account_sid: str, auth_token: str, service_sid: str, timeout: float = 10.0):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.service_sid = service_sid
        self.timeout = timeout

    async def _post(self, path: str, data: dict) -> dict:
        url = f"{VERIFY_BASE_URL}/Services/{self.service_sid}/{path}"
        async with httpx.AsyncClient(timeout=self.timeout, auth=(self.account_sid, self.auth_token)) as client:
            try:
                response = await client.post(url, data=data)
            except httpx.HTTPError as e:
                raise OtpProviderError(f"OTP provider unreachable: {e}") from e
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            raise OtpProviderError(
                body.get("message") or f"OTP provider returned {response.status_code}",
                status=response.status_code,
                code=body.get("code"),
            )
        return body

    async def send(self, phone: str):
        await self._post("Verifications", {"To": phone, "Channel": "sms"})

    async def check(self, phone: str, code: str) -> bool:
        body = await self._post("VerificationCheck", {"To": phone, "Code": code})
        return body.get("status") == "approved"
