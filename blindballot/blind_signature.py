"""
RSA Blind Signature Transform for Anonymous Ballots

Implements Chaum's blind signature protocol over a ballot's ciphertext:
  1. Voter encodes the ciphertext as an integer m < n
  2. Voter blinds m with a fresh random factor r and the authority's (n, e)
  3. Authority signs the blinded integer (it never sees m)
  4. Voter unblinds the signature to get s = m^d mod n
  5. Anyone can verify s against m using only (n, e)

Because the verification step does not depend on r, the authority cannot
link the signature it issued to the ballot that is later cast.
"""

from typing import NamedTuple

from Crypto.Util.number import bytes_to_long

from .arithmetic import gcd, mod_inverse, mod_pow, random_in_range
from .errors import MalformedInteger, MessageTooLarge

# Prefixed to every encoded message so leading zero bytes survive encoding
MESSAGE_MARKER = b"\x01"


class PublicKey(NamedTuple):
    modulus: int
    exponent: int


class BlindingContext(NamedTuple):
    """Voter-side state for one submission. Never transmit or persist it."""
    message_integer: int
    blinding_factor: int
    blinded_message: int


# ---------------------------------------------------------------------------
# Message encoding
# ---------------------------------------------------------------------------

def encode_message(data: bytes, modulus: int = None) -> int:
    """
    Map arbitrary bytes to a big-endian unsigned integer, injectively.

    When ``modulus`` is given the result must be strictly smaller than it,
    otherwise distinct messages would alias modulo n.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError("Message must be bytes")
    m = bytes_to_long(MESSAGE_MARKER + bytes(data))
    if modulus is not None and m >= modulus:
        raise MessageTooLarge(
            f"Encoded message is {m.bit_length()} bits; modulus is {modulus.bit_length()} bits"
        )
    return m


def _check_message(m: int, n: int):
    if m < 0:
        raise ValueError("Message integer must be non-negative")
    if m >= n:
        raise MessageTooLarge()


# ---------------------------------------------------------------------------
# Voter-side operations
# ---------------------------------------------------------------------------

def blind(m: int, n: int, e: int) -> BlindingContext:
    """
    Blind a message integer with the authority's public key.

    blinded = m * r^e mod n, for a fresh r in [2, n-1] coprime to n.
    """
    _check_message(m, n)
    while True:
        r = random_in_range(2, n - 1)
        if gcd(r, n) == 1:
            break
    blinded = (m * mod_pow(r, e, n)) % n
    return BlindingContext(message_integer=m, blinding_factor=r, blinded_message=blinded)


def unblind(signature: int, r: int, n: int) -> int:
    """
    Remove the blinding factor to recover the actual signature.

    sig = blind_sig * r^-1 mod n
    """
    return (signature * mod_inverse(r, n)) % n


def verify(signature: int, m: int, e: int, n: int) -> bool:
    """
    Check sig^e mod n == m.

    A signature outside [0, n) is rejected outright: s and s + k*n verify
    identically, and the ledger keys replay protection on the raw value.
    """
    if not 0 <= signature < n:
        return False
    if not 0 <= m < n:
        return False
    return mod_pow(signature, e, n) == m


# ---------------------------------------------------------------------------
# Authority-side operation
# ---------------------------------------------------------------------------

def authority_sign(blinded: int, d: int, n: int) -> int:
    """
    Sign a blinded integer with the private exponent.

    blind_sig = blinded^d mod n
    """
    _check_message(blinded, n)
    return mod_pow(blinded, d, n)


# ---------------------------------------------------------------------------
# Serialization helpers (for API transport)
# ---------------------------------------------------------------------------

def int_to_decimal(value: int) -> str:
    return str(int(value))


def parse_decimal(value) -> int:
    """Parse a non-negative decimal integer given as str or int."""
    if isinstance(value, bool):
        raise MalformedInteger(f"Not an integer: {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().isdigit() and value.strip().isascii():
        result = int(value.strip())
    else:
        raise MalformedInteger(f"Not a decimal integer: {value!r}")
    if result < 0:
        raise MalformedInteger(f"Negative integer: {value!r}")
    return result


def public_key_to_dict(key: PublicKey) -> dict:
    return {
        "modulus": int_to_decimal(key.modulus),
        "exponent": int_to_decimal(key.exponent),
    }


def public_key_from_dict(data: dict) -> PublicKey:
    return PublicKey(parse_decimal(data["modulus"]), parse_decimal(data["exponent"]))
