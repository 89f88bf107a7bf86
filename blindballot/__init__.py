"""BlindBallot: anonymous balloting with RSA blind signatures."""

__version__ = "0.1.0"
