#!/usr/bin/env python3
import argparse
import datetime
import os
import sys

from jose import jwt

from farm_assistant.auth import JWT_ALGORITHM


def generate_token(user_id: str, secret: str, hours: int = 1) -> str:
    """Generate a JWT token for testing."""
    payload = {
        "sub": user_id,
        "exp": datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=hours)
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def main():
    parser = argparse.ArgumentParser(description="Generate a JWT token for testing")
    parser.add_argument("--user", type=str, required=True, help="User ID to put in the 'sub' claim")
    parser.add_argument("--secret", type=str, default=os.getenv("JWT_SECRET", ""),
                        help="Signing secret (default: $JWT_SECRET)")
    parser.add_argument("--hours", type=int, default=1, help="Token lifetime in hours")
    args = parser.parse_args()

    if not args.secret:
        print("Error: pass --secret or set JWT_SECRET")
        sys.exit(1)

    print(generate_token(args.user, args.secret, args.hours))


if __name__ == "__main__":
    main()
