from __future__ import annotations

import pytest

from rbacgate.auth.config import ConfigError, load_gate_config, load_route_file, parse_routes

_VARS = [
    "RBAC_APP_NAME",
    "RBAC_TOKEN_SECRET",
    "RBAC_TOKEN_SECRET_FILE",
    "RBAC_USE_RSA",
    "RBAC_USE_LOCAL_ONLY",
    "RBAC_AUTHORITY_URL",
    "RBAC_AUTHORITY_TIMEOUT_SECONDS",
    "RBAC_POLICY_FILE",
    "RBAC_ROUTES_FILE",
    "RBAC_REFRESH_INTERVAL_SECONDS",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    cfg = load_gate_config()
    assert cfg.app_name == ""
    assert cfg.token_secret is None
    assert cfg.use_rsa is False
    assert cfg.authority_url is None
    assert cfg.use_local_only is True
    assert cfg.authority_enabled is False
    assert cfg.authority_timeout_seconds == 5.0
    assert cfg.refresh_interval_seconds == 10.0
    assert cfg.log_level == "info"


def test_authority_url_turns_off_local_only_by_default(monkeypatch) -> None:
    monkeypatch.setenv("RBAC_AUTHORITY_URL", "http://idm:8080")
    monkeypatch.setenv("RBAC_APP_NAME", "shop")
    cfg = load_gate_config()
    assert cfg.use_local_only is False
    assert cfg.authority_enabled is True


def test_explicit_local_only_wins(monkeypatch) -> None:
    monkeypatch.setenv("RBAC_AUTHORITY_URL", "http://idm:8080")
    monkeypatch.setenv("RBAC_USE_LOCAL_ONLY", "true")
    cfg = load_gate_config()
    assert cfg.use_local_only is True
    assert cfg.authority_enabled is False


def test_numeric_settings_are_clamped(monkeypatch) -> None:
    monkeypatch.setenv("RBAC_AUTHORITY_TIMEOUT_SECONDS", "0.2")
    monkeypatch.setenv("RBAC_REFRESH_INTERVAL_SECONDS", "-3")
    cfg = load_gate_config()
    assert cfg.authority_timeout_seconds == 1.0
    assert cfg.refresh_interval_seconds == 0.0


def test_unparseable_numbers_use_defaults(monkeypatch) -> None:
    monkeypatch.setenv("RBAC_AUTHORITY_TIMEOUT_SECONDS", "soon")
    assert load_gate_config().authority_timeout_seconds == 5.0


def test_secret_from_env_and_file(monkeypatch, tmp_path) -> None:
    key = tmp_path / "public.pem"
    key.write_text("-----BEGIN PUBLIC KEY-----\nabc\n-----END PUBLIC KEY-----\n", encoding="utf-8")
    monkeypatch.setenv("RBAC_TOKEN_SECRET_FILE", str(key))
    monkeypatch.setenv("RBAC_USE_RSA", "1")
    cfg = load_gate_config()
    assert cfg.use_rsa is True
    assert cfg.token_secret.startswith("-----BEGIN PUBLIC KEY-----")

    load_gate_config.cache_clear()
    monkeypatch.setenv("RBAC_TOKEN_SECRET", "  inline-secret  ")
    assert load_gate_config().token_secret == "inline-secret"


def test_config_is_cached(monkeypatch) -> None:
    monkeypatch.setenv("RBAC_APP_NAME", "first")
    assert load_gate_config().app_name == "first"
    monkeypatch.setenv("RBAC_APP_NAME", "second")
    assert load_gate_config().app_name == "first"


def test_parse_routes_accepts_lists_and_mappings() -> None:
    whitelist, routes = parse_routes(
        {
            "whitelist": ["GET /healthz"],
            "routes": {
                "GET /api/orders": ["/orders", "view"],
                r"^DELETE /api/orders/\d+$": {"page": "/orders", "action": "delete"},
            },
        }
    )
    assert whitelist == ["GET /healthz"]
    assert routes == {
        "GET /api/orders": ("/orders", "view"),
        r"^DELETE /api/orders/\d+$": ("/orders", "delete"),
    }


def test_parse_routes_empty_document() -> None:
    assert parse_routes({}) == ([], {})


@pytest.mark.parametrize(
    "doc",
    [
        [],
        {"whitelist": "GET /healthz"},
        {"whitelist": [1]},
        {"routes": ["GET /x"]},
        {"routes": {"GET /x": ["/x"]}},
        {"routes": {"GET /x": {"page": "/x"}}},
    ],
)
def test_parse_routes_rejects_bad_shapes(doc) -> None:
    with pytest.raises(ConfigError):
        parse_routes(doc)


def test_load_route_file(tmp_path) -> None:
    p = tmp_path / "routes.yaml"
    p.write_text(
        """
whitelist:
  - GET /healthz
routes:
  GET /api/orders: [/orders, view]
""",
        encoding="utf-8",
    )
    assert load_route_file(p) == (["GET /healthz"], {"GET /api/orders": ("/orders", "view")})


def test_load_route_file_errors(tmp_path) -> None:
    with pytest.raises(ConfigError, match="cannot read routes file"):
        load_route_file(tmp_path / "missing.yaml")
    bad = tmp_path / "routes.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_route_file(bad)
