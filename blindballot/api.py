"""
BlindBallot REST API

Two logically separated services running on the same Flask app:

  Authority (blind signing):
    GET  /api/authority/public-key            — Authority modulus and exponent
    POST /api/elections/<id>/sign             — Blind-sign a blinded ballot integer
    GET  /api/elections/<id>/channel-status   — Has this channel been served?

  Ballot Ledger:
    POST /api/elections                       — Create an election (registry owner)
    GET  /api/elections                       — List elections
    GET  /api/elections/<id>                  — Election details
    POST /api/elections/<id>/ballots          — Cast a certified ballot
    GET  /api/elections/<id>/ballots/<idx>    — Read one ballot
    POST /api/elections/<id>/ballots/<idx>/escrow-key — Reveal the escrow key
    GET  /api/elections/<id>/stats            — Counts
    GET  /api/elections/<id>/verify           — Verify ledger integrity

Caller identity comes from request headers: X-Voter-Identity for ballots,
X-Channel-Id for signing requests, X-Registry-Owner for creating elections.
"""

import logging
from pathlib import Path

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import config, database
from .authority import Authority
from .blind_signature import public_key_to_dict
from .errors import (
    AuthorizationError,
    BallotError,
    ElectionNotFound,
    EscrowKeyAlreadySet,
    IndexOutOfRange,
    LedgerCorrupted,
    SignatureInvalid,
    SignatureReplayed,
)
from .issuer import bootstrap, channel_status, issue_blind_signature
from .registry import ElectionRegistry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = Flask(__name__)
CORS(app)

authority: Authority = None
registry: ElectionRegistry = None


def initialize(ledger_dir: Path = None, key_size: int = None, registry_owner: str = None, clock=None):
    """Load or create the authority key and the election registry."""
    global authority, registry
    config.configure_logging()
    authority = bootstrap(key_size=key_size)
    kwargs = {} if clock is None else {"clock": clock}
    registry = ElectionRegistry(
        owner=registry_owner or config.REGISTRY_OWNER,
        storage_dir=ledger_dir if ledger_dir is not None else config.LEDGER_DIR,
        **kwargs,
    )
    registry.subscribe(lambda event: logger.info("Indexed election %d", event.election_id))
    logger.info("BlindBallot initialized and ready.")


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

def _status_for(exc: BallotError) -> int:
    if isinstance(exc, (ElectionNotFound, IndexOutOfRange)):
        return 404
    if isinstance(exc, (SignatureReplayed, EscrowKeyAlreadySet)):
        return 409
    if isinstance(exc, (SignatureInvalid, AuthorizationError)):
        return 403
    if isinstance(exc, LedgerCorrupted):
        return 500
    return 400


@app.errorhandler(BallotError)
def handle_ballot_error(exc: BallotError):
    return jsonify({"success": False, "error": str(exc), "reason": exc.code}), _status_for(exc)


def _bad_request(message: str):
    return jsonify({"success": False, "error": message}), 400


def _json_body():
    """The request body when it is a JSON object, otherwise None."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _identity(header: str):
    value = request.headers.get(header, "").strip()
    return value or None


def _hex_field(data: dict, name: str):
    try:
        return bytes.fromhex(str(data.get(name, "")).strip())
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Authority API
# ---------------------------------------------------------------------------

@app.route("/api/authority/public-key", methods=["GET"])
def api_public_key():
    """Return the authority's public modulus and exponent as decimal strings."""
    body = public_key_to_dict(authority.public_key)
    body["pem"] = authority.export_public_pem()
    return jsonify(body)


@app.route("/api/elections/<int:election_id>/sign", methods=["POST"])
def api_sign(election_id: int):
    """
    Blind-sign a blinded ballot integer, once per channel per election.

    Request JSON:
      { "blinded_message": str }   # decimal

    Response JSON (success):
      { "success": true, "blind_signature": str }
    """
    channel_id = _identity("X-Channel-Id")
    if channel_id is None:
        return _bad_request("X-Channel-Id header is required")

    election = registry.get_election(election_id)
    if (election.modulus, election.exponent) != tuple(authority.public_key):
        return _bad_request("Election is not certified by this authority")

    data = _json_body()
    if data is None:
        return _bad_request("Request body must be a JSON object")
    blinded = data.get("blinded_message")
    if blinded is None:
        return _bad_request("blinded_message is required")

    result = issue_blind_signature(authority, channel_id, election_id, blinded)
    if result["success"]:
        return jsonify(result), 200
    status = 409 if result.get("reason") == "AlreadySigned" else 400
    return jsonify(result), status


@app.route("/api/elections/<int:election_id>/channel-status", methods=["GET"])
def api_channel_status(election_id: int):
    channel_id = _identity("X-Channel-Id")
    if channel_id is None:
        return _bad_request("X-Channel-Id header is required")
    return jsonify(channel_status(channel_id, election_id))


# ---------------------------------------------------------------------------
# Ledger API
# ---------------------------------------------------------------------------

@app.route("/api/elections", methods=["POST"])
def api_create_election():
    """
    Create an election bound to the authority's public key.

    Request JSON:
      {
        "opens_at":        int,          # unix seconds, inclusive
        "closes_at":       int,          # unix seconds, exclusive
        "candidates":      [str, ...],
        "multiple_choice": bool          # optional, default false
      }
    """
    data = _json_body()
    if data is None:
        return _bad_request("Request body must be a JSON object")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return _bad_request("candidates must be a non-empty list")
    try:
        opens_at = int(data["opens_at"])
        closes_at = int(data["closes_at"])
    except (KeyError, TypeError, ValueError):
        return _bad_request("opens_at and closes_at must be integers")
    multiple_choice = data.get("multiple_choice", False)
    if not isinstance(multiple_choice, bool):
        return _bad_request("multiple_choice must be a boolean")

    election_id = registry.create_election(
        caller=_identity("X-Registry-Owner"),
        multiple_choice=multiple_choice,
        opens_at=opens_at,
        closes_at=closes_at,
        candidates=candidates,
        modulus=authority.modulus,
        exponent=authority.exponent,
    )
    return jsonify({"success": True, "election_id": election_id}), 201


@app.route("/api/elections", methods=["GET"])
def api_list_elections():
    return jsonify({"elections": registry.list_elections(), "count": registry.election_count()})


@app.route("/api/elections/<int:election_id>", methods=["GET"])
def api_election(election_id: int):
    return jsonify(registry.get_election(election_id).describe())


@app.route("/api/elections/<int:election_id>/ballots", methods=["POST"])
def api_cast_ballot(election_id: int):
    """
    Cast a certified ballot.

    Request JSON:
      {
        "encrypted_content": str,   # hex
        "message_integer":   str,   # decimal
        "signature":         str    # decimal, the unblinded signature
      }

    Response JSON (success):
      { "success": true, "ballot_index": int }
    """
    owner = _identity("X-Voter-Identity")
    if owner is None:
        return _bad_request("X-Voter-Identity header is required")

    data = _json_body()
    if data is None:
        return _bad_request("Request body must be a JSON object")
    if not all(data.get(k) not in (None, "") for k in ("encrypted_content", "message_integer", "signature")):
        return _bad_request("encrypted_content, message_integer, and signature are required")
    content = _hex_field(data, "encrypted_content")
    if content is None:
        return _bad_request("encrypted_content must be hex")

    election = registry.get_election(election_id)
    index = election.cast_ballot(
        owner=owner,
        encrypted_content=content,
        message_integer=str(data["message_integer"]),
        signature=str(data["signature"]),
    )
    return jsonify({"success": True, "ballot_index": index})


@app.route("/api/elections/<int:election_id>/ballots/<int:ballot_index>", methods=["GET"])
def api_ballot(election_id: int, ballot_index: int):
    ballot = registry.get_election(election_id).ballot_at(ballot_index)
    return jsonify(ballot.to_dict())


@app.route("/api/elections/<int:election_id>/ballots/<int:ballot_index>/escrow-key", methods=["POST"])
def api_reveal_escrow_key(election_id: int, ballot_index: int):
    """
    Reveal a ballot's escrow key (owner only, once).

    Request JSON:
      { "key": str }   # hex
    """
    caller = _identity("X-Voter-Identity")
    if caller is None:
        return _bad_request("X-Voter-Identity header is required")

    data = _json_body()
    if data is None:
        return _bad_request("Request body must be a JSON object")
    key = _hex_field(data, "key")
    if not key:
        return _bad_request("key must be non-empty hex")

    ballot = registry.get_election(election_id).reveal_escrow_key(caller, ballot_index, key)
    return jsonify({"success": True, "ballot": ballot.to_dict()})


@app.route("/api/elections/<int:election_id>/stats", methods=["GET"])
def api_stats(election_id: int):
    stats = registry.get_election(election_id).get_stats()
    stats["signatures_issued"] = database.count_signatures(election_id)
    return jsonify(stats)


@app.route("/api/elections/<int:election_id>/verify", methods=["GET"])
def api_verify(election_id: int):
    return jsonify(registry.get_election(election_id).verify_chain())


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.route("/api/health", methods=["GET"])
def api_health():
    return jsonify({"status": "ok", "service": "BlindBallot"})


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    initialize()
    app.run(host=config.HOST, port=config.PORT, debug=config.DEBUG)
