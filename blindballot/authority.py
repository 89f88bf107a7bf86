"""
Signing Authority

Owns one RSA key pair for the lifetime of an election family. Publishes
(n, e) and signs blinded integers with d. It never sees a ballot, never
binds a signature to a voter, and never hands out d.
"""

import logging

from Crypto.PublicKey import RSA

from .blind_signature import PublicKey, authority_sign

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 3072


class Authority:
    def __init__(self, key: RSA.RsaKey):
        if not key.has_private():
            raise ValueError("Authority requires a private RSA key")
        self._key = key
        self._public_key = PublicKey(key.n, key.e)

    @classmethod
    def generate(cls, bits: int = DEFAULT_KEY_SIZE) -> "Authority":
        logger.info("Generating %d-bit authority key pair", bits)
        return cls(RSA.generate(bits))

    @classmethod
    def from_pem(cls, pem: str) -> "Authority":
        return cls(RSA.import_key(pem))

    def export_private_pem(self) -> str:
        return self._key.export_key().decode()

    def export_public_pem(self) -> str:
        return self._key.publickey().export_key().decode()

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    @property
    def modulus(self) -> int:
        return self._public_key.modulus

    @property
    def exponent(self) -> int:
        return self._public_key.exponent

    def sign(self, blinded_message: int) -> int:
        """blind_sig = blinded^d mod n; the value itself is never logged."""
        signature = authority_sign(blinded_message, self._key.d, self._key.n)
        logger.debug("Signed one blinded request")
        return signature

    def __repr__(self):
        return f"<Authority {self._key.n.bit_length()}-bit>"
