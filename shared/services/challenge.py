"""
Challenge (CAPTCHA) verification used by the attempt governor.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx


logger = logging.getLogger(__name__)

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class ChallengeVerifier(ABC):
    """Verifies a client-supplied challenge token with an external service."""

    @abstractmethod
    async def verify(self, token: str, remote_ip: Optional[str] = None) -> bool:
        ...


class RecaptchaVerifier(ChallengeVerifier):
    """
    reCAPTCHA siteverify client.

    Fails closed: a missing secret, a transport error or an unsuccessful
    response all count as an invalid token.
    """

    def __init__(
        self,
        secret_key: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        verify_url: str = RECAPTCHA_VERIFY_URL,
        timeout: float = 5.0
    ):
        self.secret_key = secret_key
        self.verify_url = verify_url
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=False
        )
        if not secret_key:
            logger.warning("RECAPTCHA_SECRET_KEY not configured - challenge tokens will be rejected")

    async def verify(self, token: str, remote_ip: Optional[str] = None) -> bool:
        if not self.secret_key or not token:
            return False

        data = {"secret": self.secret_key, "response": token}
        if remote_ip and remote_ip != "unknown":
            data["remoteip"] = remote_ip

        try:
            response = await self._http_client.post(self.verify_url, data=data)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            logger.error(f"reCAPTCHA verification request failed: {e}")
            return False
        except ValueError as e:
            logger.error(f"reCAPTCHA returned invalid JSON: {e}")
            return False

        if not result.get("success"):
            logger.warning(f"reCAPTCHA verification failed: {result.get('error-codes', [])}")
            return False
        return True

    async def close(self) -> None:
        if self._owns_client and not self._http_client.is_closed:
            await self._http_client.aclose()
