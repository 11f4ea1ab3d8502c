"""Mint an access token for local testing (tokens normally come from the identity provider)."""
from datetime import timedelta
import uuid


if __name__ == "__main__":
    import argparse

    from stocktake.core.security import create_access_token

    parser = argparse.ArgumentParser(description="Issue a bearer token for the stocktake API")
    parser.add_argument("--user-id", default=None, help="Actor id (random UUID if omitted)")
    parser.add_argument("--role", default="counter", help="Role claim, e.g. counter, supervisor, admin")
    parser.add_argument("--minutes", type=int, default=60, help="Token lifetime in minutes")
    args = parser.parse_args()

    user_id = args.user_id or str(uuid.uuid4())
    token = create_access_token(user_id, args.role, expires_delta=timedelta(minutes=args.minutes))
    print(f"user_id: {user_id}")
    print(f"role:    {args.role}")
    print(token)
