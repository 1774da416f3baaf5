"""
CLI utility to mint JWT access tokens for local introspection.

When scopegate runs with SCOPEGATE_INTROSPECTION=jwt it verifies HS256 tokens
itself instead of asking the OAuth2 provider. This script plays the provider:
it mints a token for a subject, which the policy service then authorizes
through the subject's roles.

Usage examples:

    # Token for alice (default secret, 8 hours)
    python -m scripts.generate_token --sub alice

    # Token with custom expiration (2 hours)
    python -m scripts.generate_token --sub ci-agent --exp-hours 2

    # Token with custom secret (must match SCOPEGATE_JWT_SECRET_KEY on the server)
    python -m scripts.generate_token --sub alice --secret my-prod-secret

    # Expired token (for testing rejection)
    python -m scripts.generate_token --sub alice --exp-hours -1
"""

import argparse
import datetime

import jwt


def generate_token(
    subject: str,
    secret: str,
    algorithm: str = "HS256",
    exp_hours: float = 8.0,
) -> str:
    """
    Generate a signed JWT for `subject`.

    Args:
        subject: The "sub" claim - the identity the policy service knows
        secret: The signing key (must match the server's SCOPEGATE_JWT_SECRET_KEY)
        algorithm: JWT signing algorithm (default: HS256)
        exp_hours: Hours until expiration (negative = already expired)
    """
    now = datetime.datetime.now(datetime.timezone.utc)

    payload = {
        "sub": subject,
        "iat": now,
        "exp": now + datetime.timedelta(hours=exp_hours),
    }

    return jwt.encode(payload, secret, algorithm=algorithm)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate JWT access tokens for scopegate's local introspection.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --sub alice
  %(prog)s --sub alice --exp-hours -1
  %(prog)s --sub alice --secret my-secret
        """,
    )

    parser.add_argument("--sub", required=True, help="Subject claim (e.g., 'alice', 'ci-agent')")
    parser.add_argument(
        "--secret",
        default="dev-secret-change-me",
        help="JWT signing secret (must match server's SCOPEGATE_JWT_SECRET_KEY)",
    )
    parser.add_argument("--algorithm", default="HS256", help="JWT signing algorithm")
    parser.add_argument(
        "--exp-hours",
        type=float,
        default=8.0,
        help="Hours until token expires (negative = already expired, default: 8)",
    )

    args = parser.parse_args()

    token = generate_token(
        subject=args.sub,
        secret=args.secret,
        algorithm=args.algorithm,
        exp_hours=args.exp_hours,
    )

    exp_time = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
        hours=args.exp_hours
    )

    print(f"Subject:    {args.sub}")
    print(f"Expires:    {exp_time.isoformat()}")
    print(f"Algorithm:  {args.algorithm}")
    print()
    print(f"Token: {token}")

    print()
    print("Usage with curl (authorize an action):")
    print("  curl -X POST http://localhost:8080/scopes/authorize \\")
    print('    -H "Content-Type: application/json" \\')
    print(f'    -H "Authorization: Bearer {token}" \\')
    print('    -d \'{"method": "POST", "uri": "/roles"}\'')


if __name__ == "__main__":
    main()
