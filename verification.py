"""
Anti-automation check for checkout

A verifier answers one of three things for a token: it passed, it failed, or
nothing was attempted because the client sent no token. Checkout only rejects
on FAILED. A missing token is SKIPPED, so the check is effectively optional
for clients that never send one (local development, scripted tests).

When a token *is* sent the check fails closed: a missing secret, a network
error or an unreadable reply all count as FAILED.
"""
import enum
import logging
from typing import Optional

import httpx

from settings import RECAPTCHA_VERIFY_URL

logger = logging.getLogger(__name__)


class VerificationResult(enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RecaptchaVerifier:
    def __init__(self, secret_key: Optional[str], verify_url: str = RECAPTCHA_VERIFY_URL,
                 client: Optional[httpx.Client] = None, timeout: float = 5.0):
        self.secret_key = secret_key
        self.verify_url = verify_url
        self.client = client if client is not None else httpx.Client(timeout=timeout)

    def verify(self, token: Optional[str]) -> VerificationResult:
        if not token or not token.strip():
            return VerificationResult.SKIPPED
        if not self.secret_key:
            logger.error("RECAPTCHA_SECRET_KEY is not set, rejecting supplied token")
            return VerificationResult.FAILED
        try:
            response = self.client.post(self.verify_url, data={"secret": self.secret_key, "response": token})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError):
            logger.exception("reCAPTCHA verification request failed")
            return VerificationResult.FAILED
        if data.get("success") is True:
            return VerificationResult.PASSED
        logger.info("reCAPTCHA rejected token: %s", data.get("error-codes"))
        return VerificationResult.FAILED

    def close(self) -> None:
        self.client.close()
