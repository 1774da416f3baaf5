"""
Typed payloads for scopes, roles and authorization requests.

JSON bodies are decoded into these models at the boundary, so the registry
and the decision procedure only ever see validated, normalized values:

    Scope   {"name": "roles.write", "method": "POST", "uri": "/roles", "description": "..."}
    Action  {"method": "POST", "uri": "/roles"}
    Role    {"name": "editors", "description": "...", "members": [...], "scopes": [...]}

Pydantic's own ValidationError is translated into scopegate's, so callers
only have to handle one exception type for bad input.
"""

from collections.abc import Mapping
from typing import Annotated, Any, TypeVar

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from scopegate.errors import ValidationError
from scopegate.routetree import method_bit

MIN_SCOPE_NAME_LENGTH = 4

ModelT = TypeVar("ModelT", bound=BaseModel)


def normalize_method(method: str) -> str:
    method = method.strip().upper()
    if method_bit(method) == 0:
        raise ValueError("scope: invalid HTTP method")
    return method


def normalize_uri(uri: str) -> str:
    uri = uri.strip()
    if not uri.startswith("/") or uri.strip("/").strip() == "":
        raise ValueError("scope: invalid URI for scope")
    return uri


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


HTTPMethod = Annotated[str, AfterValidator(normalize_method)]
ScopeURI = Annotated[str, AfterValidator(normalize_uri)]
UniqueNames = Annotated[list[str], AfterValidator(_dedupe)]


class Action(BaseModel):
    """A single request to authorize: an HTTP method on a URI."""

    model_config = ConfigDict(frozen=True)

    method: HTTPMethod
    uri: ScopeURI


class Scope(BaseModel):
    """
    A named permission covering one HTTP method on one URI pattern.

    Frozen: a registered scope never changes until the registry is reset.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    method: HTTPMethod
    uri: ScopeURI
    description: str = ""

    @field_validator("name")
    @classmethod
    def check_name(cls, name: str) -> str:
        if len(name) < MIN_SCOPE_NAME_LENGTH:
            raise ValueError("scope: invalid name for scope")
        return name.lower()


class Role(BaseModel):
    """
    A named group of members sharing a set of scopes.

    Serialized with `name` as the key for `id` (use `by_alias=True`).
    Existence of members and scopes is checked by the access controller,
    not here.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="name")
    description: str = ""
    members: UniqueNames = Field(default_factory=list)
    scopes: UniqueNames = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def check_id(cls, role_id: str) -> str:
        role_id = role_id.lower()
        if role_id == "":
            raise ValueError("role: name should be unique and cannot be empty")
        return role_id

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def parse(model: type[ModelT], data: ModelT | Mapping[str, Any]) -> ModelT:
    """
    Validate `data` into `model`, raising scopegate's ValidationError.

    Already-built instances are returned unchanged.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe(e)) from e


def _describe(error: pydantic.ValidationError) -> str:
    details = []
    for entry in error.errors():
        message = entry["msg"].removeprefix("Value error, ")
        location = ".".join(str(part) for part in entry["loc"])
        details.append(f"{location}: {message}" if location else message)
    return "; ".join(details)
