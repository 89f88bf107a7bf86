"""
Blind Signature Issuance

Orchestrates the signing flow in front of the Authority:
  1. Load (or create on first boot) the authority key pair
  2. Allow one signing request per submission channel per election
  3. Blind-sign the channel's blinded ballot integer

The issuer ONLY sees the blinded integer. It cannot link the resulting
unblinded signature to the ballot later cast on the ledger.
"""

import logging

from . import config, database
from .authority import Authority
from .blind_signature import int_to_decimal, parse_decimal
from .errors import BallotError

logger = logging.getLogger(__name__)


def bootstrap(key_size: int = None) -> Authority:
    """
    Initialize the database and return the Authority, generating and
    storing its key pair if none exists yet.
    """
    database.init_db()

    private_key, _ = database.get_authority_keys()
    if private_key is None:
        authority = Authority.generate(key_size or config.AUTHORITY_KEY_SIZE)
        database.store_authority_keys(
            authority.export_private_pem(), authority.export_public_pem()
        )
        logger.info("Authority key pair stored")
    else:
        authority = Authority.from_pem(private_key)
        logger.info("Authority key pair loaded")
    return authority


def issue_blind_signature(authority: Authority, channel_id: str, election_id: int,
                          blinded_message) -> dict:
    """
    Issue a blind signature for a channel that has not been served yet.

    Parameters
    ----------
    authority : Authority
        The signing authority for this election family
    channel_id : str
        The submission channel asking for a signature
    election_id : int
        Election the signature is requested for
    blinded_message : int or str
        The blinded ballot integer (decimal string over the wire)

    Returns
    -------
    dict with keys:
        success         : bool
        blind_signature : str (only on success), decimal
        error           : str (only on failure)
    """
    try:
        blinded = parse_decimal(blinded_message)
    except BallotError as exc:
        return {"success": False, "error": str(exc), "reason": exc.code}

    if blinded >= authority.modulus:
        return {
            "success": False,
            "error": "Blinded message must be smaller than the modulus",
            "reason": "MessageTooLarge",
        }

    if not database.claim_signing_slot(channel_id, election_id):
        logger.warning("Repeated signing request for election %s", election_id)
        return {
            "success": False,
            "error": "Signature already issued to this channel",
            "reason": "AlreadySigned",
        }

    try:
        blind_sig = authority.sign(blinded)
    except Exception:
        database.release_signing_slot(channel_id, election_id)
        raise

    logger.info("Issued blind signature for election %s", election_id)
    return {"success": True, "blind_signature": int_to_decimal(blind_sig)}


def channel_status(channel_id: str, election_id: int) -> dict:
    """Return whether a channel has obtained its signature for an election."""
    return database.get_channel_status(channel_id, election_id)
