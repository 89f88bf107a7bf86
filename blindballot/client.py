"""
Voter-side client

Everything a voter does locally: encrypt the choice under an ephemeral RSA
key, encode and blind the ciphertext for the authority, unblind the returned
signature, and later hand over the ephemeral private key as the escrow key.
The blinding factor stays inside the Voter and is dropped once used.
"""

from typing import NamedTuple, Optional, Sequence

from Crypto.Cipher import PKCS1_OAEP
from Crypto.PublicKey import RSA

from . import config
from .blind_signature import (
    BlindingContext,
    PublicKey,
    blind,
    public_key_from_dict,
    encode_message,
    unblind,
    verify,
)
from .errors import SignatureInvalid

ESCROW_KEY_PROTECTION = "PBKDF2WithHMAC-SHA1AndAES256-CBC"


class SealedBallot(NamedTuple):
    encrypted_content: bytes
    message_integer: int
    blinded_message: int


class BallotSubmission(NamedTuple):
    encrypted_content: bytes
    message_integer: int
    signature: int

    def to_json(self) -> dict:
        return {
            "encrypted_content": self.encrypted_content.hex(),
            "message_integer": str(self.message_integer),
            "signature": str(self.signature),
        }


def validate_choices(choices: Sequence[int], candidate_count: int, multiple_choice: bool):
    if not choices:
        raise ValueError("At least one choice is required")
    if not multiple_choice and len(choices) != 1:
        raise ValueError("Election accepts exactly one choice")
    if len(set(choices)) != len(choices):
        raise ValueError("Duplicate choice")
    for choice in choices:
        if not 0 <= choice < candidate_count:
            raise ValueError(f"Choice {choice} is not a candidate id")


def encrypt_choices(choices: Sequence[int], public_key: RSA.RsaKey) -> bytes:
    """RSA-OAEP encrypt the candidate ids, one byte each."""
    return PKCS1_OAEP.new(public_key).encrypt(bytes(choices))


def open_ballot(encrypted_content: bytes, escrow_key: bytes, passphrase: Optional[str] = None) -> list:
    """Decrypt a ballot with its revealed escrow key and return the candidate ids."""
    key = RSA.import_key(escrow_key, passphrase=passphrase)
    return list(PKCS1_OAEP.new(key).decrypt(encrypted_content))


class Voter:
    def __init__(self, authority_key, key_bits: int = None, passphrase: Optional[str] = None):
        # Accepts the decimal dict served by the authority endpoint
        if isinstance(authority_key, dict):
            authority_key = public_key_from_dict(authority_key)
        self.authority_key = PublicKey(*authority_key)
        self._ephemeral = RSA.generate(key_bits or config.EPHEMERAL_KEY_SIZE)
        self._passphrase = passphrase
        self._pending: Optional[BlindingContext] = None
        self._encrypted: Optional[bytes] = None

    def seal(self, choices: Sequence[int], candidate_count: int = None,
             multiple_choice: bool = False) -> SealedBallot:
        """Encrypt and blind a ballot; send ``blinded_message`` to the authority."""
        choices = list(choices)
        if candidate_count is not None:
            validate_choices(choices, candidate_count, multiple_choice)

        n, e = self.authority_key
        encrypted = encrypt_choices(choices, self._ephemeral.publickey())
        m = encode_message(encrypted, n)
        # A fresh blinding factor for every request
        self._pending = blind(m, n, e)
        self._encrypted = encrypted
        return SealedBallot(encrypted, m, self._pending.blinded_message)

    def finish(self, blind_signature: int) -> BallotSubmission:
        """Unblind the authority's answer into a submission for the ledger."""
        if self._pending is None:
            raise RuntimeError("No sealed ballot awaiting a signature")
        n, e = self.authority_key
        m = self._pending.message_integer
        signature = unblind(int(blind_signature), self._pending.blinding_factor, n)
        if not verify(signature, m, e, n):
            raise SignatureInvalid("Authority returned a signature that does not verify")

        submission = BallotSubmission(self._encrypted, m, signature)
        self._pending = None
        self._encrypted = None
        return submission

    def escrow_key(self) -> bytes:
        """The ephemeral private key, PEM encoded, to reveal after casting."""
        if self._passphrase is None:
            return self._ephemeral.export_key(format="PEM", pkcs=8)
        return self._ephemeral.export_key(
            format="PEM",
            passphrase=self._passphrase,
            pkcs=8,
            protection=ESCROW_KEY_PROTECTION,
        )
