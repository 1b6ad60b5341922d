"""Transactional email over an HTTP mail API."""

import logging

import httpx

logger = logging.getLogger(__name__)


class MailerError(Exception):
    pass


class HttpMailer:
    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def send(self, to: str, subject: str, html: str):
        if not self.configured:
            logger.info("Mail API not configured, skipping email to %s (%s)", to, subject)
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.sender, "to": [to], "subject": subject, "html": html},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise MailerError(f"Email to {to} failed: {e}") from e
        logger.info("Sent email '%s' to %s", subject, to)
