"""
Big-integer modular arithmetic.

Thin wrappers over pycryptodome's Integer type so every modular
exponentiation in the project goes through the same Montgomery ladder
(which does not branch on exponent bits), and every random draw comes from
the library's CSPRNG.
"""

from Crypto.Math.Numbers import Integer
from Crypto.Util.number import GCD

from .errors import NoInverse


def mod_pow(base: int, exponent: int, modulus: int) -> int:
    """Return ``base ** exponent % modulus``."""
    if modulus <= 0:
        raise ValueError("Modulus must be positive")
    if exponent < 0:
        raise ValueError("Exponent must be non-negative; use mod_inverse")
    if modulus == 1:
        return 0
    result = Integer(base % modulus)
    result.inplace_pow(exponent, modulus)
    return int(result)


def mod_inverse(value: int, modulus: int) -> int:
    """
    Return x such that ``value * x % modulus == 1``.

    Raises NoInverse when value and modulus share a factor.
    """
    if modulus <= 1:
        raise ValueError("Modulus must be greater than 1")
    if gcd(value, modulus) != 1:
        raise NoInverse(f"{value} has no inverse modulo the given modulus")
    return int(Integer(value % modulus).inverse(modulus))


def gcd(a: int, b: int) -> int:
    return GCD(a, b)


def random_in_range(low: int, high: int) -> int:
    """Uniform, cryptographically secure integer in ``[low, high]``."""
    if low > high:
        raise ValueError(f"Empty range [{low}, {high}]")
    if low == high:
        return low
    return int(Integer.random_range(min_inclusive=low, max_inclusive=high))
