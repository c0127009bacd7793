#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

"""
Development helper for JWT keys and access tokens.

Without arguments, prints a fresh RS256 key pair as environment variables.
With --user and --org, issues an access token signed with JWT_PRIVATE_KEY so
the approval endpoints can be called locally.

Usage:
    python scripts/issue_dev_token.py
    python scripts/issue_dev_token.py --user alice --org org-1 --permission approval:cancel
"""

import argparse
import os
import sys

# Add the parent directory to the path so we can import from api
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.auth import AuthService, generate_key_pair


def print_key_pair() -> None:
    private_key, public_key = generate_key_pair()
    newline = "\\n"

    print("=== Environment Variables ===")
    print(f'JWT_PRIVATE_KEY="{private_key.replace(chr(10), newline)}"')
    print(f'JWT_PUBLIC_KEY="{public_key.replace(chr(10), newline)}"')


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate JWT keys or issue a development token")
    parser.add_argument("--user", help="Subject (user id) of the token")
    parser.add_argument("--org", help="Organization id of the token")
    parser.add_argument("--permission", action="append", default=[],
                        help="Permission claim, may be repeated")
    args = parser.parse_args()

    if not args.user and not args.org:
        print_key_pair()
        return 0

    if not (args.user and args.org):
        parser.error("--user and --org must be given together")

    if not os.getenv("JWT_PRIVATE_KEY"):
        print("JWT_PRIVATE_KEY is not set; the token would not validate against the API", file=sys.stderr)
        return 1

    auth_service = AuthService()
    print(auth_service.issue_token(args.user, args.org, permissions=args.permission))
    return 0


if __name__ == "__main__":
    sys.exit(main())
