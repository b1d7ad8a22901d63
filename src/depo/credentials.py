"""
GitHub credential storage.

The token lives in a dotenv file at the project root (``.depo.env`` by
default) and may be overridden by the ``GITHUB_TOKEN`` environment variable.
Credentials are loaded once per command and handed to the discovery client
explicitly; nothing in the core reads them from global state.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, set_key

from .cli_config import get_config
from .error_handling import (
    ErrorCategory,
    FilesystemError,
    InvalidCredentialError,
    NotFoundError,
    get_error_handler,
    log_credential_error,
)

TOKEN_ENV_VAR = "GITHUB_TOKEN"
CREDENTIAL_PATTERN = re.compile(r"^[a-zA-Z0-9_\-+=/.]+$")


@dataclass(frozen=True)
class Credentials:
    """Optional bearer token for outbound requests."""

    token: Optional[str] = None
    source: Optional[str] = None

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    def auth_headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def masked_token(self, visible: int = 8) -> str:
        """Only the last ``visible`` characters, for display."""
        if not self.token:
            return ""
        return f"...{self.token[-visible:]}"


def validate_token(token: str) -> str:
    """
    Validate and sanitize a token.

    Raises:
        InvalidCredentialError: If the token is empty, too short, too long or
            contains unsafe characters
    """
    security = get_config().security
    token = (token or "").strip()

    if not token:
        raise InvalidCredentialError("Invalid token: must be a non-empty string")
    if len(token) > security.max_credential_length:
        raise InvalidCredentialError(
            f"Token too long: {len(token)} chars (max: {security.max_credential_length})"
        )
    if len(token) < security.min_credential_length:
        raise InvalidCredentialError(
            f"Token too short (minimum {security.min_credential_length} characters)"
        )
    if not CREDENTIAL_PATTERN.match(token):
        raise InvalidCredentialError("Invalid token: contains unsafe characters")

    return token


def token_file_path(root: Path) -> Path:
    return Path(root) / get_config().security.token_file


def load_credentials(root: Path) -> Credentials:
    """Load the token from the environment, falling back to the token file."""
    env_token = os.environ.get(TOKEN_ENV_VAR)
    if env_token:
        try:
            return Credentials(validate_token(env_token), "environment")
        except InvalidCredentialError as e:
            log_credential_error(
                f"Ignoring invalid {TOKEN_ENV_VAR} environment variable",
                "credentials",
                "load_credentials",
                credential_type="environment_variable",
                exception=e,
            )

    path = token_file_path(root)
    if not path.is_file():
        return Credentials()

    if os.name == "posix" and path.stat().st_mode & 0o077:
        get_error_handler().warning(
            ErrorCategory.CREDENTIAL,
            "Token file is readable by other users",
            "credentials",
            "load_credentials",
            details={"file_path": str(path)},
            suggestions=[f"chmod 600 {path}"],
        )

    file_token = dotenv_values(path).get(TOKEN_ENV_VAR)
    if not file_token:
        return Credentials()

    try:
        return Credentials(validate_token(file_token), str(path))
    except InvalidCredentialError as e:
        log_credential_error(
            "Ignoring invalid token in token file",
            "credentials",
            "load_credentials",
            credential_type="token_file",
            exception=e,
        )
        return Credentials()


def save_token(root: Path, token: str) -> Path:
    """Store ``token`` in the token file with owner-only permissions."""
    token = validate_token(token)
    path = token_file_path(root)
    try:
        path.touch(mode=0o600, exist_ok=True)
        set_key(str(path), TOKEN_ENV_VAR, token, quote_mode="never")
        path.chmod(0o600)
    except OSError as e:
        raise FilesystemError(f"Failed to write token file {path}", path=path, cause=e) from e
    return path


def remove_token(root: Path) -> Path:
    """
    Delete the token file.

    Raises:
        NotFoundError: No token file exists
    """
    path = token_file_path(root)
    if not path.is_file():
        raise NotFoundError("No token file found", path=path)
    try:
        path.unlink()
    except OSError as e:
        raise FilesystemError(f"Failed to remove token file {path}", path=path, cause=e) from e
    return path
