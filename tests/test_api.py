"""
Integration tests for the Flask API using a test client.
"""

import threading

import pytest

from blindballot import database
from blindballot.blind_signature import PublicKey
from blindballot.client import Voter, open_ballot

OWNER = "test-owner"


@pytest.fixture(scope="module")
def app_client(tmp_path_factory):
    """Create a Flask test client with an isolated DB and ledger directory."""
    tmp = tmp_path_factory.mktemp("blindballot_test")

    database.DB_PATH = tmp / "test_authority.db"
    database._local = threading.local()

    from blindballot import api as api_module
    api_module.initialize(ledger_dir=tmp / "elections", key_size=2048, registry_owner=OWNER)

    api_module.app.config["TESTING"] = True
    with api_module.app.test_client() as client:
        yield client
    database.close_connection()


def _public_key(client) -> PublicKey:
    data = client.get("/api/authority/public-key").get_json()
    return PublicKey(int(data["modulus"]), int(data["exponent"]))


def _create_election(client, opens_offset=-60, closes_offset=84600, **extra):
    import time
    now = int(time.time())
    body = {
        "opens_at": now + opens_offset,
        "closes_at": now + closes_offset,
        "candidates": ["Candidate A", "Candidate B"],
    }
    body.update(extra)
    r = client.post("/api/elections", json=body, headers={"X-Registry-Owner": OWNER})
    return r


def _signed_submission(client, election_id, channel, choices=(0,)):
    """Full voter flow against the API: seal, blind-sign, unblind."""
    authority_key = client.get("/api/authority/public-key").get_json()
    voter = Voter(authority_key, key_bits=1024)
    sealed = voter.seal(list(choices))
    r = client.post(
        f"/api/elections/{election_id}/sign",
        json={"blinded_message": str(sealed.blinded_message)},
        headers={"X-Channel-Id": channel},
    )
    data = r.get_json()
    assert data["success"], data
    return voter, voter.finish(int(data["blind_signature"]))


def _cast(client, election_id, submission, identity="alice"):
    return client.post(
        f"/api/elections/{election_id}/ballots",
        json=submission.to_json(),
        headers={"X-Voter-Identity": identity},
    )


@pytest.fixture(scope="module")
def election_id(app_client):
    r = _create_election(app_client)
    assert r.status_code == 201
    return r.get_json()["election_id"]


# ---------------------------------------------------------------------------
# Health / setup
# ---------------------------------------------------------------------------

def test_health(app_client):
    r = app_client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json()["status"] == "ok"


def test_public_key(app_client):
    r = app_client.get("/api/authority/public-key")
    assert r.status_code == 200
    data = r.get_json()
    assert int(data["modulus"]).bit_length() == 2048
    assert data["exponent"] == "65537"
    assert "PUBLIC KEY" in data["pem"]


# ---------------------------------------------------------------------------
# Elections
# ---------------------------------------------------------------------------

class TestElections:
    def test_create_requires_owner(self, app_client):
        r = app_client.post(
            "/api/elections",
            json={"opens_at": 0, "closes_at": 10, "candidates": ["A"]},
            headers={"X-Registry-Owner": "intruder"},
        )
        assert r.status_code == 403
        assert r.get_json()["reason"] == "NotRegistryOwner"

    def test_invalid_window(self, app_client):
        r = _create_election(app_client, opens_offset=0, closes_offset=-120)
        assert r.status_code == 400
        assert r.get_json()["reason"] == "InvalidWindow"

    def test_missing_fields(self, app_client):
        r = app_client.post("/api/elections", json={"candidates": ["A"]},
                            headers={"X-Registry-Owner": OWNER})
        assert r.status_code == 400

    def test_body_must_be_object(self, app_client):
        r = app_client.post("/api/elections", json=[1, 2], headers={"X-Registry-Owner": OWNER})
        assert r.status_code == 400
        assert "JSON object" in r.get_json()["error"]

    def test_multiple_choice_must_be_boolean(self, app_client):
        r = _create_election(app_client, multiple_choice="false")
        assert r.status_code == 400
        assert "boolean" in r.get_json()["error"]

    def test_multiple_choice_flag(self, app_client):
        r = _create_election(app_client, multiple_choice=True)
        assert r.status_code == 201
        data = app_client.get(f"/api/elections/{r.get_json()['election_id']}").get_json()
        assert data["multiple_choice"] is True

    def test_election_details(self, app_client, election_id):
        data = app_client.get(f"/api/elections/{election_id}").get_json()
        assert data["state"] == "open"
        assert data["modulus"] == str(_public_key(app_client).modulus)
        assert len(data["candidates"]) == 2

    def test_list(self, app_client, election_id):
        data = app_client.get("/api/elections").get_json()
        assert data["count"] >= 1

    def test_unknown_election(self, app_client):
        r = app_client.get("/api/elections/9999")
        assert r.status_code == 404
        assert r.get_json()["reason"] == "ElectionNotFound"


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------

class TestSigning:
    def test_channel_signed_once(self, app_client, election_id):
        _signed_submission(app_client, election_id, "channel-once")
        r = app_client.post(
            f"/api/elections/{election_id}/sign",
            json={"blinded_message": "12345"},
            headers={"X-Channel-Id": "channel-once"},
        )
        assert r.status_code == 409
        assert not r.get_json()["success"]

        status = app_client.get(
            f"/api/elections/{election_id}/channel-status",
            headers={"X-Channel-Id": "channel-once"},
        ).get_json()
        assert status["signed"]

    def test_missing_channel(self, app_client, election_id):
        r = app_client.post(f"/api/elections/{election_id}/sign", json={"blinded_message": "1"})
        assert r.status_code == 400

    def test_body_must_be_object(self, app_client, election_id):
        r = app_client.post(
            f"/api/elections/{election_id}/sign",
            json=["12345"],
            headers={"X-Channel-Id": "channel-array"},
        )
        assert r.status_code == 400
        status = app_client.get(
            f"/api/elections/{election_id}/channel-status",
            headers={"X-Channel-Id": "channel-array"},
        ).get_json()
        assert not status["signed"]

    def test_malformed_blinded_message(self, app_client, election_id):
        r = app_client.post(
            f"/api/elections/{election_id}/sign",
            json={"blinded_message": "abc"},
            headers={"X-Channel-Id": "channel-malformed"},
        )
        assert r.status_code == 400


# ---------------------------------------------------------------------------
# Voting flow
# ---------------------------------------------------------------------------

class TestVoting:
    def test_cast_reveal_and_open(self, app_client, election_id):
        voter, submission = _signed_submission(app_client, election_id, "channel-cast")
        r = _cast(app_client, election_id, submission, identity="alice")
        assert r.status_code == 200
        index = r.get_json()["ballot_index"]

        r = app_client.post(
            f"/api/elections/{election_id}/ballots/{index}/escrow-key",
            json={"key": voter.escrow_key().hex()},
            headers={"X-Voter-Identity": "alice"},
        )
        assert r.status_code == 200
        ballot = r.get_json()["ballot"]
        assert open_ballot(bytes.fromhex(ballot["encrypted_content"]),
                           bytes.fromhex(ballot["escrow_key"])) == [0]

        fetched = app_client.get(f"/api/elections/{election_id}/ballots/{index}").get_json()
        assert fetched["escrow_key"] == ballot["escrow_key"]

    def test_replay_prevented(self, app_client, election_id):
        _, submission = _signed_submission(app_client, election_id, "channel-replay")
        assert _cast(app_client, election_id, submission).status_code == 200

        replay = submission._replace(encrypted_content=b"\x00\x01")
        r = _cast(app_client, election_id, replay)
        assert r.status_code == 409
        assert r.get_json()["reason"] == "SignatureReplayed"

    def test_invalid_signature(self, app_client, election_id):
        _, submission = _signed_submission(app_client, election_id, "channel-invalid")
        r = _cast(app_client, election_id, submission._replace(signature=1234567))
        assert r.status_code == 403
        assert r.get_json()["reason"] == "SignatureInvalid"

    def test_not_started(self, app_client):
        future_id = _create_election(app_client, opens_offset=3600, closes_offset=7200).get_json()["election_id"]
        _, submission = _signed_submission(app_client, future_id, "channel-future")
        r = _cast(app_client, future_id, submission)
        assert r.status_code == 400
        assert r.get_json()["reason"] == "NotStarted"

    def test_closed(self, app_client):
        past_id = _create_election(app_client, opens_offset=-3600, closes_offset=-1800).get_json()["election_id"]
        _, submission = _signed_submission(app_client, past_id, "channel-past")
        r = _cast(app_client, past_id, submission)
        assert r.status_code == 400
        assert r.get_json()["reason"] == "Closed"

    def test_missing_identity(self, app_client, election_id):
        _, submission = _signed_submission(app_client, election_id, "channel-anon")
        r = app_client.post(f"/api/elections/{election_id}/ballots", json=submission.to_json())
        assert r.status_code == 400

    def test_missing_fields(self, app_client, election_id):
        r = app_client.post(
            f"/api/elections/{election_id}/ballots",
            json={"encrypted_content": "00"},
            headers={"X-Voter-Identity": "alice"},
        )
        assert r.status_code == 400

    def test_escrow_rules(self, app_client, election_id):
        voter, submission = _signed_submission(app_client, election_id, "channel-escrow")
        index = _cast(app_client, election_id, submission, identity="carol").get_json()["ballot_index"]
        url = f"/api/elections/{election_id}/ballots/{index}/escrow-key"
        key = {"key": voter.escrow_key().hex()}

        r = app_client.post(url, json=key, headers={"X-Voter-Identity": "mallory"})
        assert r.status_code == 403
        assert r.get_json()["reason"] == "NotOwner"

        assert app_client.post(url, json=key, headers={"X-Voter-Identity": "carol"}).status_code == 200

        r = app_client.post(url, json=key, headers={"X-Voter-Identity": "carol"})
        assert r.status_code == 409
        assert r.get_json()["reason"] == "EscrowKeyAlreadySet"

    def test_non_object_bodies_rejected(self, app_client, election_id):
        r = app_client.post(
            f"/api/elections/{election_id}/ballots",
            json=["00", "1", "1"],
            headers={"X-Voter-Identity": "alice"},
        )
        assert r.status_code == 400

        r = app_client.post(
            f"/api/elections/{election_id}/ballots/0/escrow-key",
            json="00ff",
            headers={"X-Voter-Identity": "alice"},
        )
        assert r.status_code == 400

    def test_ballot_not_found(self, app_client, election_id):
        r = app_client.get(f"/api/elections/{election_id}/ballots/9999")
        assert r.status_code == 404
        assert r.get_json()["reason"] == "IndexOutOfRange"


# ---------------------------------------------------------------------------
# Stats & audit
# ---------------------------------------------------------------------------

class TestStatsAndAudit:
    def test_stats_track_casts(self, app_client, election_id):
        before = app_client.get(f"/api/elections/{election_id}/stats").get_json()
        _, submission = _signed_submission(app_client, election_id, "channel-stats")
        _cast(app_client, election_id, submission)
        after = app_client.get(f"/api/elections/{election_id}/stats").get_json()
        assert after["ballot_count"] == before["ballot_count"] + 1
        assert after["used_signature_count"] == before["used_signature_count"] + 1
        assert after["candidate_count"] == 2
        assert after["signatures_issued"] == before["signatures_issued"] + 1

    def test_verify(self, app_client, election_id):
        r = app_client.get(f"/api/elections/{election_id}/verify")
        assert r.status_code == 200
        assert r.get_json()["valid"]
