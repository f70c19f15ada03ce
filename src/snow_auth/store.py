"""Credential storage.

Credentials of every kind live in one JSON object keyed by provider
identifier. Every write re-reads the file, merges a single key and
writes the whole object back with owner-only permissions.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from snow_auth.logging_config import get_logger

logger = get_logger(__name__)

FILE_MODE = 0o600

SERVICENOW_PROVIDER_ID = "servicenow"


class CredentialStoreError(Exception):
    """Error during credential storage operations."""


class _CredentialModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class OAuthCredential(_CredentialModel):
    """Generic OAuth token pair with absolute expiry (epoch ms)."""

    type: Literal["oauth"] = "oauth"
    refresh: str
    access: str
    expires: int


class ApiKeyCredential(_CredentialModel):
    """Static API key."""

    type: Literal["api"] = "api"
    key: str


class WellKnownCredential(_CredentialModel):
    """Token issued by a server's well-known auth command.

    ``key`` names the environment variable the token is exported as.
    """

    type: Literal["wellknown"] = "wellknown"
    key: str
    token: str


class ServiceNowOAuthCredential(_CredentialModel):
    """Instance OAuth client plus the tokens obtained for it.

    Tokens are optional so that a record can be seeded before the
    authorization flow completes.
    """

    type: Literal["servicenow-oauth"] = "servicenow-oauth"
    instance: str
    client_id: str = Field(alias="clientId")
    client_secret: str = Field(alias="clientSecret")
    access_token: str | None = Field(default=None, alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    expires_at: int | None = Field(default=None, alias="expiresAt")


class ServiceNowBasicCredential(_CredentialModel):
    """Instance username/password pair."""

    type: Literal["servicenow-basic"] = "servicenow-basic"
    instance: str
    username: str
    password: str


class EnterpriseCredential(_CredentialModel):
    """Enterprise license record. Unknown fields are preserved."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    type: Literal["enterprise"] = "enterprise"
    license_key: str = Field(alias="licenseKey")
    enterprise_url: str | None = Field(default=None, alias="enterpriseUrl")


Credential = Annotated[
    OAuthCredential
    | ApiKeyCredential
    | WellKnownCredential
    | ServiceNowOAuthCredential
    | ServiceNowBasicCredential
    | EnterpriseCredential,
    Field(discriminator="type"),
]

_credential_adapter: TypeAdapter[Credential] = TypeAdapter(Credential)


def parse_credential(data: dict[str, Any]) -> Credential:
    """Validate a raw JSON record into a credential model.

    Raises:
        pydantic.ValidationError: If the record matches no credential type
    """
    return _credential_adapter.validate_python(data)


def serialize_credential(credential: Credential) -> dict[str, Any]:
    """Serialize a credential to its JSON record shape."""
    return credential.model_dump(by_alias=True, exclude_none=True)


class CredentialStore:
    """JSON file credential store.

    Reads never fail: a missing or corrupt file is an empty store.
    Writes always fail loudly with CredentialStoreError.

    Writers inside one process are serialized; writers in separate
    processes are not coordinated and the last write wins.
    """

    def __init__(self, file_path: str | Path) -> None:
        """Initialize the store.

        Args:
            file_path: Path to the JSON file, created on first write
        """
        self._file_path = Path(file_path)
        self._lock = asyncio.Lock()

    @property
    def file_path(self) -> Path:
        """Path of the backing file."""
        return self._file_path

    def _read_raw(self) -> dict[str, Any]:
        """Read the backing file, treating any failure as empty."""
        try:
            data = json.loads(self._file_path.read_text())
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable credential store %s: %s", self._file_path, e)
            return {}

        if not isinstance(data, dict):
            logger.warning("Ignoring credential store %s: not a JSON object", self._file_path)
            return {}
        return data

    def _write_raw(self, data: dict[str, Any]) -> None:
        """Write the whole store atomically and restrict permissions."""
        payload = json.dumps(data, indent=2)
        dir_path = self._file_path.parent

        try:
            dir_path.mkdir(parents=True, exist_ok=True)
            fd, temp_path_str = tempfile.mkstemp(dir=dir_path, prefix=".auth-")
        except OSError as e:
            raise CredentialStoreError(
                f"Failed to write credential store {self._file_path}: {e}"
            ) from e

        temp_path = Path(temp_path_str)
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(payload)
            temp_path.replace(self._file_path)
            os.chmod(self._file_path, FILE_MODE)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise CredentialStoreError(
                f"Failed to write credential store {self._file_path}: {e}"
            ) from e

        logger.debug("Saved credential store to %s", self._file_path)

    def _parse_entries(self, raw: dict[str, Any]) -> dict[str, Credential]:
        result: dict[str, Credential] = {}
        for provider_id, record in raw.items():
            try:
                result[provider_id] = parse_credential(record)
            except ValidationError as e:
                logger.warning(
                    "Skipping invalid credential for %s: %s",
                    provider_id,
                    e.errors()[0].get("msg", "invalid record"),
                )
        return result

    async def all(self) -> dict[str, Credential]:
        """Return every stored credential keyed by provider identifier."""
        return self._parse_entries(self._read_raw())

    async def get(self, provider_id: str) -> Credential | None:
        """Return the credential for a provider, or None if absent."""
        record = self._read_raw().get(provider_id)
        if record is None:
            return None
        try:
            return parse_credential(record)
        except ValidationError:
            logger.warning("Stored credential for %s is invalid", provider_id)
            return None

    async def set(self, provider_id: str, credential: Credential) -> None:
        """Store a credential, replacing any previous one for the provider.

        Other providers' records are left untouched, including ones
        this version cannot parse.

        Raises:
            CredentialStoreError: If the file cannot be written
        """
        async with self._lock:
            data = self._read_raw()
            data[provider_id] = serialize_credential(credential)
            self._write_raw(data)
            logger.debug("Stored %s credential for %s", credential.type, provider_id)

    async def remove(self, provider_id: str) -> None:
        """Delete a provider's credential. Absent keys are a no-op.

        Raises:
            CredentialStoreError: If the file cannot be written
        """
        async with self._lock:
            data = self._read_raw()
            data.pop(provider_id, None)
            self._write_raw(data)
            logger.debug("Removed credential for %s", provider_id)
