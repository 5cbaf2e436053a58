"""
Dev script — mint an access token for local development.

Usage:
    python -m scripts.issue_dev_token qa@example.com ["QA Engineer"]

Tokens are normally issued by the identity service. This signs one with
the local JWT_SECRET_KEY so the API can be exercised with curl.
"""

import sys
import uuid

# Ensure the backend root is on the path
sys.path.insert(0, ".")

from testcase_studio.auth.tokens import issue_access_token
from testcase_studio.core.config import settings


def main() -> None:
    if len(sys.argv) < 2:
        print("usage: python -m scripts.issue_dev_token EMAIL [NAME]")
        sys.exit(2)

    email = sys.argv[1].strip().lower()
    name = sys.argv[2] if len(sys.argv) > 2 else None
    token = issue_access_token(str(uuid.uuid4()), email, name)

    print()
    print("=" * 60)
    print("  Dev Access Token")
    print("=" * 60)
    print()
    print(f"  Email:   {email}")
    print(f"  Expires: in {settings.JWT_ACCESS_TOKEN_TTL_SEC}s")
    print()
    print(f"  Authorization: Bearer {token}")
    print("=" * 60)
    print()


if __name__ == "__main__":
    main()
