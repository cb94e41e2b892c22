#!/usr/bin/env python3
"""Refresh or revoke provider tokens from the command line.

Uses the same OIDC_* settings as the web app, so a token issued through
the login flow can be rotated or revoked by an operator.

Usage:
    # Revoke both tokens of a compromised session:
    python scripts/manage_tokens.py revoke --access-token AT --refresh-token RT

    # Revoke only the refresh token:
    python scripts/manage_tokens.py revoke --refresh-token RT --kind refresh_token

    # Refresh with a narrower scope:
    python scripts/manage_tokens.py refresh --refresh-token RT --scope openid

Environment Variables:
    OIDC_TOKEN_HOST, OIDC_CLIENT_ID, OIDC_CLIENT_SECRET: provider and credentials
    OIDC_REFRESH_TOKEN: refresh token (instead of --refresh-token)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def refresh_tokens(access_token: str, refresh_token: str, scope: str | None) -> dict:
    """Exchange ``refresh_token`` for a new token set."""
    # Import here to avoid loading config before env vars are set
    from oidc_consumer.service.runtime import get_runtime
    from oidc_consumer.storage.models import TokenRecord

    runtime = get_runtime()
    token = TokenRecord(access_token=access_token, refresh_token=refresh_token)
    refreshed = await runtime.tokens.refresh(token, scope)
    return refreshed.to_dict()


async def revoke_tokens(access_token: str, refresh_token: str | None, kind: str) -> dict:
    from oidc_consumer.service.runtime import get_runtime
    from oidc_consumer.storage.models import TokenKind, TokenRecord

    runtime = get_runtime()
    token = TokenRecord(access_token=access_token, refresh_token=refresh_token)
    await runtime.tokens.revoke(token, TokenKind(kind))
    return {"revoked": kind}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Refresh or revoke OIDC provider tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("action", choices=["refresh", "revoke"])
    parser.add_argument("--access-token", default=os.environ.get("OIDC_ACCESS_TOKEN", ""))
    parser.add_argument(
        "--refresh-token",
        default=os.environ.get("OIDC_REFRESH_TOKEN"),
        help="Refresh token (or set OIDC_REFRESH_TOKEN env var)",
    )
    parser.add_argument("--scope", default=None, help="Scope for refresh (defaults to OIDC_SCOPE)")
    parser.add_argument(
        "--kind",
        choices=["access_token", "refresh_token", "all"],
        default="all",
        help="Which token to revoke",
    )

    args = parser.parse_args(argv)

    if args.action == "refresh" and not args.refresh_token:
        print("Error: --refresh-token or OIDC_REFRESH_TOKEN environment variable required")
        return 1
    if args.action == "revoke" and args.kind != "refresh_token" and not args.access_token:
        print("Error: --access-token required unless --kind refresh_token")
        return 1
    if args.action == "revoke" and args.kind == "refresh_token" and not args.refresh_token:
        print("Error: --refresh-token required for --kind refresh_token")
        return 1

    # No flow state is involved, so a shared session store is not needed;
    # this also overrides SESSION_BACKEND from the environment or .env
    os.environ["SESSION_BACKEND"] = "memory"

    try:
        if args.action == "refresh":
            result = asyncio.run(refresh_tokens(args.access_token, args.refresh_token, args.scope))
            print("Token refreshed:")
            print(f"  Access Token: {result['access_token'][:20]}...")
            if result.get("expires_at"):
                print(f"  Expires At: {result['expires_at']}")
        else:
            result = asyncio.run(revoke_tokens(args.access_token, args.refresh_token, args.kind))
            print(f"Revoked: {result['revoked']}")
    except Exception as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
