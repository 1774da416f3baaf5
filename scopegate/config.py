"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables (12-factor style: nothing is hardcoded in source).

In a deployment these come from the service manifest:
- SCOPEGATE_HYDRA_ADMIN_URL, SCOPEGATE_KETO_URL point at the OAuth2 provider
  and the policy service
- SCOPEGATE_JWT_SECRET_KEY comes from the secret store when local JWT
  introspection is used

Locally, you can set them via environment variables or a .env file.
"""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Service configuration with environment variable bindings.

    Each field maps to an environment variable with the SCOPEGATE_ prefix.
    For example, `keto_url` reads from SCOPEGATE_KETO_URL.
    """

    # --- Server settings ---

    host: str = "0.0.0.0"
    port: int = 8080

    # Maps to Python's logging levels.
    log_level: str = "info"

    # --- OAuth2 provider (ORY Hydra) ---

    # Admin API: client registration and token introspection.
    hydra_admin_url: str = "http://localhost:4445"

    # The OAuth2 client registered with every scope at initialization.
    client_id: str = "scopegate-root"
    client_callback_url: str = "http://localhost:8080/callback"

    # "hydra" asks the provider to introspect tokens; "jwt" verifies
    # HS256 tokens locally with `jwt_secret_key`.
    introspection: Literal["hydra", "jwt"] = "hydra"

    # Development default only - NEVER use this in production.
    jwt_secret_key: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"

    # --- Policy service (ORY Keto) ---

    keto_url: str = "http://localhost:4466"

    # --- Access control ---

    # Tokens shorter than this are rejected on registered routes without
    # contacting the introspector.
    min_token_length: int = 10

    # Length of the root token minted when scopes are initialized.
    root_token_length: int = 64

    # Timeout for every call to the OAuth2 provider and the policy service.
    http_timeout_seconds: float = 5.0

    # Known user IDs for role membership checks (JSON list in the env var).
    user_ids: list[str] = []

    model_config = {
        "env_prefix": "SCOPEGATE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


# Singleton instance: import this from other modules.
settings = Settings()
