"""
Error taxonomy for BlindBallot.

Every error carries a stable ``code`` that the HTTP layer reports as the
rejection reason. A raised error always means the operation had no effect.
"""


class BallotError(Exception):
    code = "BallotError"

    def __init__(self, message: str = None):
        super().__init__(message or self.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


# ---------------------------------------------------------------------------
# Construction errors: the election never comes into existence
# ---------------------------------------------------------------------------

class ConstructionError(BallotError):
    code = "ConstructionError"


class InvalidWindow(ConstructionError):
    """End date of voting must be later than start date"""
    code = "InvalidWindow"


class InvalidPublicKey(ConstructionError):
    """Election public key is not a usable RSA modulus/exponent pair"""
    code = "InvalidPublicKey"


# ---------------------------------------------------------------------------
# Validation errors on ballot submission
# ---------------------------------------------------------------------------

class ValidationError(BallotError):
    code = "ValidationError"


class SignatureInvalid(ValidationError):
    """Signature not verified"""
    code = "SignatureInvalid"


class SignatureReplayed(ValidationError):
    """Signature has already been used to vote"""
    code = "SignatureReplayed"


class ElectionNotStarted(ValidationError):
    """Voting has not started"""
    code = "NotStarted"


class ElectionClosed(ValidationError):
    """Voting is over"""
    code = "Closed"


# ---------------------------------------------------------------------------
# Authorization errors
# ---------------------------------------------------------------------------

class AuthorizationError(BallotError):
    code = "AuthorizationError"


class NotOwner(AuthorizationError):
    """You are not the ballot owner"""
    code = "NotOwner"


class EscrowKeyAlreadySet(AuthorizationError):
    """Escrow key already set"""
    code = "EscrowKeyAlreadySet"


class IndexOutOfRange(AuthorizationError, IndexError):
    """Ballot index out of range"""
    code = "IndexOutOfRange"


class NotRegistryOwner(AuthorizationError):
    """Caller is not the owner"""
    code = "NotRegistryOwner"


# ---------------------------------------------------------------------------
# Arithmetic errors: malformed input or a broken cryptographic precondition
# ---------------------------------------------------------------------------

class CryptoArithmeticError(BallotError):
    code = "ArithmeticError"


class NoInverse(CryptoArithmeticError):
    """Value has no modular inverse"""
    code = "NoInverse"


class MessageTooLarge(CryptoArithmeticError):
    """Message integer must be smaller than the modulus"""
    code = "MessageTooLarge"


class MalformedInteger(CryptoArithmeticError, ValueError):
    """Expected a non-negative decimal integer"""
    code = "MalformedInteger"


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------

class LedgerCorrupted(BallotError):
    """Stored ledger failed integrity verification"""
    code = "LedgerCorrupted"


class ElectionNotFound(BallotError, KeyError):
    """Election not found"""
    code = "ElectionNotFound"

    def __str__(self):
        # KeyError would otherwise repr() the message
        return self.args[0] if self.args else self.code
