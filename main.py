#!/usr/bin/env python3
"""
rbacgate - RBAC authorization gate for HTTP services.
Evaluate policies offline, issue test tokens, or run the guarded HTTP server.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)


def check_action(policy_file: str, account: str, page: str, action: str) -> Dict[str, Any]:
    """Decide a single (page, action) for an account against a policy file."""
    from rbacgate.authz.policy import load_policy_file, resolve

    policy = load_policy_file(policy_file)
    granted, requirements = resolve(policy, account, page, action)
    return {
        "policy": policy.name,
        "account": account,
        "page": page,
        "action": action,
        "granted": granted,
        "require": [list(x) for x in requirements] if requirements is not None else None,
    }


def list_permissions(policy_file: str, account: str, *, include_all: bool = False) -> Dict[str, Any]:
    """Every (page, action) the account holds under a policy file."""
    from rbacgate.authz.policy import grants_to_dict, load_policy_file, resolve_all

    policy = load_policy_file(policy_file)
    grants = resolve_all(policy, account, include_ungranted=include_all)
    return {"policy": policy.name, "account": account, "permission": grants_to_dict(grants)}


def _read_key(value: str) -> str:
    # Accept either a path to a PEM/secret file or the literal secret.
    if value.startswith("-----BEGIN") or not os.path.isfile(value):
        return value
    return Path(value).read_text(encoding="utf-8").strip()


def issue_token(
    account: str,
    key: str,
    *,
    use_rsa: bool = False,
    user_id: int = 0,
    user_name: Optional[str] = None,
    app_id: str = "",
    hours: int = 8,
) -> str:
    from rbacgate.auth.tokens import encode_access_token

    return encode_access_token(
        user_id=user_id,
        user_account=account,
        user_name=user_name or account,
        app_id=app_id,
        timeout_hours=hours,
        key=_read_key(key),
        use_rsa=use_rsa,
    )


def main(argv: Optional[list] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="RBAC authorization gate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Can alice edit /orders?
  python main.py --check alice /orders edit --policy policy.yaml

  # Everything bob may do (including denied actions)
  python main.py --permissions bob --policy policy.yaml --all

  # Issue an RS512 test token
  python main.py --issue-token alice --key rsa_private.pem --rsa --app-id shop

  # Run the guarded HTTP server (configured from RBAC_* env vars)
  python main.py --serve --port 8080
        """,
    )
    parser.add_argument("--check", nargs=3, metavar=("ACCOUNT", "PAGE", "ACTION"), help="Decide one page/action")
    parser.add_argument("--permissions", metavar="ACCOUNT", help="List the account's permissions")
    parser.add_argument("--policy", help="Policy document (YAML or JSON)")
    parser.add_argument("--all", action="store_true", help="Include denied actions (with --permissions)")

    parser.add_argument("--issue-token", metavar="ACCOUNT", help="Sign an access token for ACCOUNT")
    parser.add_argument("--key", help="Signing key: shared secret, or path to a secret / RSA private key PEM")
    parser.add_argument("--rsa", action="store_true", help="Sign with RS512 instead of HS512")
    parser.add_argument("--user-id", type=int, default=0, help="user_id claim (default: 0)")
    parser.add_argument("--user-name", help="user_name claim (default: ACCOUNT)")
    parser.add_argument("--app-id", default="", help="app_id claim")
    parser.add_argument("--hours", type=int, default=8, help="Token lifetime in hours (default: 8)")

    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")

    args = parser.parse_args(argv)

    try:
        if args.check:
            if not args.policy:
                parser.error("--check requires --policy")
            account, page, action = args.check
            out = check_action(args.policy, account, page, action)
            print(json.dumps(out, indent=2, sort_keys=False))
            return 0 if out["granted"] else 1

        if args.permissions:
            if not args.policy:
                parser.error("--permissions requires --policy")
            out = list_permissions(args.policy, args.permissions, include_all=args.all)
            print(json.dumps(out, indent=2, sort_keys=False))
            return 0

        if args.issue_token:
            if not args.key:
                parser.error("--issue-token requires --key")
            print(
                issue_token(
                    args.issue_token,
                    args.key,
                    use_rsa=args.rsa,
                    user_id=args.user_id,
                    user_name=args.user_name,
                    app_id=args.app_id,
                    hours=args.hours,
                )
            )
            return 0

        if args.serve:
            from rbacgate.api.server import run

            run(host=args.host, port=args.port)
            return 0

        parser.print_help()
        return 2

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    sys.exit(main())
