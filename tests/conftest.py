"""
Pytest config.

Tests import the local `rbacgate/` package and `main.py` from the repo root. Pin the
repo root on sys.path so collection works with a global `pytest` entrypoint too.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Callable, Dict, Tuple

import jwt
import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from rbacgate.authz.policy import PolicyConfig  # noqa: E402

HS_SECRET = "unit-test-secret-" + "x" * 64


@pytest.fixture(autouse=True)
def _reset_gate_config_cache() -> None:
    """`load_gate_config` is lru_cached; every test starts from a fresh env read."""
    from rbacgate.auth.config import load_gate_config

    load_gate_config.cache_clear()
    yield
    load_gate_config.cache_clear()


@pytest.fixture(scope="session")
def rsa_keypair() -> Tuple[str, str]:
    """(private_pem, public_pem) generated once per test session."""
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
    ).decode("ascii")
    public_pem = (
        key.public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode("ascii")
    )
    return private_pem, public_pem


@pytest.fixture
def hs_token() -> Callable[..., str]:
    """Factory for HS512 tokens signed with HS_SECRET. `exp_offset_ms` may be negative."""

    def _make(account: str = "alice", *, exp_offset_ms: int = 3_600_000, secret: str = HS_SECRET) -> str:
        claims: Dict[str, object] = {
            "user_id": 7,
            "user_name": account.title(),
            "user_account": account,
            "app_id": "shop",
            "exp": int(time.time() * 1000) + exp_offset_ms,
        }
        return jwt.encode(claims, secret, algorithm="HS512")

    return _make


@pytest.fixture
def shop_policy() -> PolicyConfig:
    return PolicyConfig.from_dict(
        {
            "name": "shop",
            "role": {
                "admin": ["alice"],
                "clerk": ["bob", "dave"],
                "regional": {"north": ["carol", "erin"], "south": ["carol"]},
                "auditors": {"sox": ["erin"]},
            },
            "permission": {
                "/orders": {
                    "view": {"role": ["default"], "comment": "anyone can browse"},
                    "edit": {"role": ["admin", "clerk"]},
                    "approve": {"role": ["admin", "regional", "auditors"], "comment": "needs sign-off"},
                    "delete": {"role": ["admin"]},
                },
                "/reports": {
                    "export": {"role": ["auditors", "ghost"]},
                },
            },
        }
    )
