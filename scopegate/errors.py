"""
Exception taxonomy for the access control service.

Every error carries the HTTP status code the server should answer with.
The HTTP layer maps these onto JSON error responses; nothing below it needs
to know about HTTP.

    AccessControlError
    ├── ValidationError          400  bad scope / role / request shape
    │   ├── DuplicateScope
    │   └── UnknownUser
    ├── AlreadyInitialized       409  registry lifecycle misuse
    ├── NotInitialized           400
    ├── RoleNotFound             404
    ├── InvalidToken             403  malformed, too short or inactive
    ├── Unauthorized             403  valid identity, no granting scope
    └── CollaboratorUnavailable  502  OAuth2 provider / policy service failed
"""


class AccessControlError(Exception):
    """
    Base class for all errors raised by scopegate.

    Attributes:
        message: Human-readable error description
        status_code: HTTP status code to return
    """

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(AccessControlError):
    """Input had the wrong shape. Always fixable by the caller."""


class DuplicateScope(ValidationError):
    def __init__(self, name: str):
        super().__init__(f"scope: {name} already exists")
        self.name = name


class UnknownUser(ValidationError):
    def __init__(self, user_id: str):
        super().__init__(f"user {user_id} doesn't exist")
        self.user_id = user_id


class AlreadyInitialized(AccessControlError):
    status_code = 409

    def __init__(self):
        super().__init__(
            "scopes have already been initialized. Please perform an update request to update them"
        )


class NotInitialized(AccessControlError):
    def __init__(self):
        super().__init__("scopes haven't been initialized")


class InvalidToken(AccessControlError):
    status_code = 403

    def __init__(self, message: str = "invalid token in header"):
        super().__init__(message)


class Unauthorized(AccessControlError):
    status_code = 403

    def __init__(self, message: str = "access: invalid token or unauthorized"):
        super().__init__(message)


class CollaboratorUnavailable(AccessControlError):
    """
    An external service (OAuth2 provider, policy service) failed.

    The detailed message is logged server-side; clients only ever see the
    generic `public_message`.
    """

    status_code = 502
    public_message = "internal error while contacting an upstream service"

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class RoleNotFound(AccessControlError):
    status_code = 404

    def __init__(self, role_id: str):
        super().__init__(f"role {role_id} doesn't exist")
        self.role_id = role_id
