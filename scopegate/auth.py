"""
Bearer token extraction and local JWT introspection.

The access controller never parses headers or tokens itself. This module
turns the raw `Authorization` header into a token string, and provides
`JWTIntrospector`, a TokenIntrospector that verifies HS256 JWTs locally
instead of asking the OAuth2 provider.

Local introspection checks:
- the signature (proves the token was issued with our secret)
- the "exp" claim (expired tokens are inactive)
- the "sub" claim (the subject handed to the policy service)

Token structure (JWT payload):
    {
        "sub": "user-or-agent-id",     # Who is making the request
        "exp": 1738800000              # When this token expires (Unix timestamp)
    }
"""

import jwt

from scopegate.config import settings
from scopegate.errors import InvalidToken


def bearer_token(authorization_header: str | None) -> str:
    """
    Extract the token from a "Bearer <token>" Authorization header.

    Returns an empty string when the header is missing or uses another
    scheme. An empty token is still a valid input for authorization:
    unregistered routes are public, and registered ones reject it as too
    short.
    """
    if not authorization_header:
        return ""

    parts = authorization_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""

    return parts[1].strip()


class JWTIntrospector:
    """
    TokenIntrospector that verifies signed JWTs with a shared secret.

    Usage::

        introspector = JWTIntrospector(secret="...", algorithm="HS256")
        subject = await introspector.introspect(token)
    """

    def __init__(self, secret: str | None = None, algorithm: str | None = None):
        self._secret = secret if secret is not None else settings.jwt_secret_key
        self._algorithm = algorithm or settings.jwt_algorithm

    async def introspect(self, token: str) -> str:
        """
        Return the subject of a valid token.

        Raises:
            InvalidToken: If the token is malformed, forged, expired, or
                          carries no usable subject
        """
        if not token:
            raise InvalidToken()

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidToken("Token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidToken(f"Invalid token: {e}")

        subject = payload.get("sub")
        if not isinstance(subject, str) or subject == "":
            raise InvalidToken("Invalid token: subject must be a non-empty string")

        return subject
