from __future__ import annotations

import jwt
import pytest

from rbacgate.auth.models import Claims, now_ms
from rbacgate.auth.tokens import TokenError, decode_access_token, encode_access_token

SECRET = "token-test-secret-" + "k" * 64


def test_hs512_round_trip() -> None:
    token = encode_access_token(
        user_id=42, user_account="alice", user_name="Alice", app_id="shop", timeout_hours=1, key=SECRET
    )
    assert jwt.get_unverified_header(token)["alg"] == "HS512"
    claims = decode_access_token(token, SECRET)
    assert claims.user_id == 42
    assert claims.user_account == "alice"
    assert claims.app_id == "shop"
    assert claims.is_expired() is False


def test_exp_is_epoch_milliseconds() -> None:
    before = now_ms()
    token = encode_access_token(
        user_id=1, user_account="a", user_name="A", app_id="x", timeout_hours=2, key=SECRET
    )
    claims = decode_access_token(token, SECRET)
    assert before + 2 * 3_600_000 <= claims.exp <= now_ms() + 2 * 3_600_000


def test_rs512_round_trip(rsa_keypair) -> None:
    private_pem, public_pem = rsa_keypair
    token = encode_access_token(
        user_id=1, user_account="bob", user_name="Bob", app_id="shop", timeout_hours=1, key=private_pem, use_rsa=True
    )
    assert jwt.get_unverified_header(token)["alg"] == "RS512"
    assert decode_access_token(token, public_pem, use_rsa=True).user_account == "bob"


def test_wrong_key_is_rejected() -> None:
    token = encode_access_token(
        user_id=1, user_account="a", user_name="A", app_id="x", timeout_hours=1, key=SECRET
    )
    with pytest.raises(TokenError):
        decode_access_token(token, "another-secret-" + "z" * 64)


def test_tampered_token_is_rejected() -> None:
    token = encode_access_token(
        user_id=1, user_account="a", user_name="A", app_id="x", timeout_hours=1, key=SECRET
    )
    header, payload, sig = token.split(".")
    forged = jwt.encode({"user_account": "root"}, "x" * 64, algorithm="HS512").split(".")[1]
    with pytest.raises(TokenError):
        decode_access_token(".".join([header, forged, sig]), SECRET)


def test_algorithm_mismatch_is_rejected(rsa_keypair) -> None:
    _private_pem, public_pem = rsa_keypair
    token = encode_access_token(
        user_id=1, user_account="a", user_name="A", app_id="x", timeout_hours=1, key=SECRET
    )
    with pytest.raises(TokenError):
        decode_access_token(token, public_pem, use_rsa=True)


def test_garbage_and_empty_inputs_are_rejected() -> None:
    with pytest.raises(TokenError):
        decode_access_token("not-a-jwt", SECRET)
    with pytest.raises(TokenError):
        decode_access_token("", SECRET)
    with pytest.raises(TokenError):
        decode_access_token("a.b.c", "")


def test_missing_claims_are_rejected() -> None:
    token = jwt.encode({"user_account": "a", "exp": now_ms() + 1000}, SECRET, algorithm="HS512")
    with pytest.raises(TokenError, match="missing claims"):
        decode_access_token(token, SECRET)


def test_expired_token_still_decodes_but_reports_expired() -> None:
    payload = {"user_id": 1, "user_name": "A", "user_account": "a", "app_id": "x", "exp": now_ms() - 1000}
    token = jwt.encode(payload, SECRET, algorithm="HS512")
    claims = decode_access_token(token, SECRET)
    assert claims.is_expired() is True


def test_claims_from_payload_coerces_types() -> None:
    c = Claims.from_payload({"user_id": "9", "user_name": "N", "user_account": "n", "app_id": 3, "exp": 100})
    assert c == Claims(user_id=9, user_name="N", user_account="n", app_id="3", exp=100)
    assert c.is_expired(now=101) is True
    assert c.is_expired(now=100) is False
    assert c.to_dict()["user_id"] == 9
    with pytest.raises(ValueError):
        Claims.from_payload({"user_id": "nine", "user_name": "N", "user_account": "n", "app_id": "x", "exp": 1})


def test_overflowing_numeric_claim_is_rejected() -> None:
    # 1e400 parses as float infinity, which has no integer value.
    raw = b'{"user_id": 1, "user_name": "A", "user_account": "a", "app_id": "x", "exp": 1e400}'
    token = jwt.api_jws.encode(raw, SECRET, algorithm="HS512")
    with pytest.raises(TokenError, match="invalid token claims"):
        decode_access_token(token, SECRET)
    with pytest.raises(ValueError):
        Claims.from_payload({"user_id": float("inf"), "user_name": "A", "user_account": "a", "app_id": "x", "exp": 1})
