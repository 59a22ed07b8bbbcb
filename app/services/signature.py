"""
QiCard webhook signature verification
"""

import base64
import binascii
import logging
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509 import load_pem_x509_certificate

from app.config import Settings, settings as default_settings
from app.core.exceptions import PaymentException

logger = logging.getLogger(__name__)


class WebhookVerifier:
    """
    Checks the RSA-SHA256 signature QiCard attaches to webhook bodies.

    The signature is base64 over the raw request body, verified with the
    gateway public key (PEM public key or certificate) configured in
    ``QICARD_PUBLIC_KEY_PATH``. Verification can only be disabled outside
    production.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._public_key = None

    @property
    def enabled(self) -> bool:
        return self.settings.must_verify_webhooks

    def _load_public_key(self):
        if self._public_key is not None:
            return self._public_key

        key_path = self.settings.QICARD_PUBLIC_KEY_PATH
        if not key_path:
            raise PaymentException.missing_configuration("QICARD_PUBLIC_KEY_PATH")
        path = Path(key_path)
        if not path.is_file():
            logger.error(f"QiCard public key not found at {path}")
            raise PaymentException.missing_configuration("QICARD_PUBLIC_KEY_PATH")

        pem = path.read_bytes()
        try:
            self._public_key = serialization.load_pem_public_key(pem)
        except ValueError:
            self._public_key = load_pem_x509_certificate(pem).public_key()
        return self._public_key

    def verify(self, raw_body: bytes, signature: Optional[str]) -> None:
        """Raise ``invalid_signature`` unless ``signature`` matches ``raw_body``"""
        if not self.enabled:
            logger.debug("Webhook signature verification disabled")
            return

        if not signature:
            logger.warning("Webhook received without signature")
            raise PaymentException.invalid_signature()

        try:
            signature_bytes = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Webhook signature is not valid base64")
            raise PaymentException.invalid_signature()

        public_key = self._load_public_key()
        try:
            public_key.verify(signature_bytes, raw_body, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            logger.warning("Webhook signature mismatch")
            raise PaymentException.invalid_signature()
