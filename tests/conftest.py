"""
pytest configuration for BlindBallot tests.
Adds the project root to sys.path and provides shared key material.
"""
import os
import sys

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

from blindballot.authority import Authority
from blindballot.blind_signature import blind, encode_message, unblind


class FakeClock:
    """Settable replacement for time.time."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture(scope="session")
def authority():
    # Small key: fast to generate, still exercises the full protocol
    return Authority.generate(1024)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def certify(authority):
    """Return a helper producing (message_integer, signature) for some bytes."""

    def _certify(content: bytes):
        n, e = authority.public_key
        m = encode_message(content, n)
        ctx = blind(m, n, e)
        sig = unblind(authority.sign(ctx.blinded_message), ctx.blinding_factor, n)
        return m, sig

    return _certify
