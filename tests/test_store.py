"""Tests for the credential store."""

from __future__ import annotations

import json
import os
import stat
from typing import TYPE_CHECKING

import pytest

from snow_auth.store import (
    ApiKeyCredential,
    CredentialStore,
    CredentialStoreError,
    EnterpriseCredential,
    OAuthCredential,
    ServiceNowBasicCredential,
    ServiceNowOAuthCredential,
    WellKnownCredential,
    parse_credential,
    serialize_credential,
)

if TYPE_CHECKING:
    from pathlib import Path


def create_oauth_credential(access: str = "AT1") -> ServiceNowOAuthCredential:
    """Create a ServiceNow OAuth credential for testing."""
    return ServiceNowOAuthCredential(
        instance="https://dev12345.service-now.com",
        client_id="client-1",
        client_secret="secret-1",
        access_token=access,
        refresh_token="RT1",
        expires_at=1_700_000_000_000,
    )


class TestCredentialModels:
    """Tests for credential serialization."""

    def test_servicenow_oauth_wire_shape(self) -> None:
        """Test camelCase field names and the type tag."""
        data = serialize_credential(create_oauth_credential())

        assert data == {
            "type": "servicenow-oauth",
            "instance": "https://dev12345.service-now.com",
            "clientId": "client-1",
            "clientSecret": "secret-1",
            "accessToken": "AT1",
            "refreshToken": "RT1",
            "expiresAt": 1_700_000_000_000,
        }

    def test_seeded_record_omits_tokens(self) -> None:
        """Test that a record without tokens serializes without them."""
        seeded = ServiceNowOAuthCredential(
            instance="https://dev1.service-now.com", client_id="c", client_secret="s"
        )
        assert "accessToken" not in serialize_credential(seeded)

    @pytest.mark.parametrize(
        ("record", "model"),
        [
            ({"type": "oauth", "refresh": "r", "access": "a", "expires": 1}, OAuthCredential),
            ({"type": "api", "key": "k"}, ApiKeyCredential),
            ({"type": "wellknown", "key": "TOKEN", "token": "t"}, WellKnownCredential),
            (
                {"type": "servicenow-basic", "instance": "i", "username": "u", "password": "p"},
                ServiceNowBasicCredential,
            ),
            ({"type": "enterprise", "licenseKey": "SNOW-ENT-1-2"}, EnterpriseCredential),
        ],
    )
    def test_parse_each_variant(self, record: dict[str, object], model: type) -> None:
        """Test that the type tag selects the credential model."""
        credential = parse_credential(record)  # type: ignore[arg-type]
        assert isinstance(credential, model)
        assert serialize_credential(credential) == record

    def test_enterprise_keeps_extra_fields(self) -> None:
        """Test that license records preserve unknown fields."""
        record = {
            "type": "enterprise",
            "licenseKey": "SNOW-ENT-1-2",
            "enterpriseUrl": "https://license.example.com",
            "jiraBaseUrl": "https://jira.example.com",
        }
        credential = parse_credential(record)

        assert isinstance(credential, EnterpriseCredential)
        assert credential.enterprise_url == "https://license.example.com"
        assert serialize_credential(credential)["jiraBaseUrl"] == "https://jira.example.com"


class TestCredentialStore:
    """Tests for CredentialStore class."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, store: CredentialStore) -> None:
        """Test that get returns exactly what set wrote."""
        credential = create_oauth_credential()

        await store.set("servicenow", credential)

        assert await store.get("servicenow") == credential

    @pytest.mark.asyncio
    async def test_get_missing_file(self, store: CredentialStore) -> None:
        """Test that a missing file is an empty store."""
        assert await store.get("servicenow") is None
        assert await store.all() == {}

    @pytest.mark.asyncio
    async def test_set_merges(self, store: CredentialStore) -> None:
        """Test that writing key A leaves key B untouched."""
        api_key = ApiKeyCredential(key="sk-test")
        await store.set("anthropic", api_key)

        await store.set("servicenow", create_oauth_credential())

        assert await store.get("anthropic") == api_key
        assert set((await store.all()).keys()) == {"anthropic", "servicenow"}

    @pytest.mark.asyncio
    async def test_last_write_wins(self, store: CredentialStore) -> None:
        """Test that a provider id maps to its latest credential."""
        await store.set("servicenow", create_oauth_credential("AT1"))
        await store.set("servicenow", create_oauth_credential("AT2"))

        stored = await store.get("servicenow")
        assert isinstance(stored, ServiceNowOAuthCredential)
        assert stored.access_token == "AT2"

    @pytest.mark.asyncio
    async def test_file_permissions(self, store: CredentialStore, store_path: Path) -> None:
        """Test that the file is readable and writable by the owner only."""
        await store.set("servicenow", create_oauth_credential())

        mode = stat.S_IMODE(os.stat(store_path).st_mode)
        assert mode == 0o600

    @pytest.mark.asyncio
    async def test_file_is_json_object(self, store: CredentialStore, store_path: Path) -> None:
        """Test the on-disk format."""
        await store.set("openai", ApiKeyCredential(key="sk-1"))

        assert json.loads(store_path.read_text()) == {"openai": {"type": "api", "key": "sk-1"}}

    @pytest.mark.asyncio
    async def test_remove(self, store: CredentialStore) -> None:
        """Test removing a credential."""
        await store.set("servicenow", create_oauth_credential())
        await store.set("openai", ApiKeyCredential(key="sk-1"))

        await store.remove("servicenow")

        assert await store.get("servicenow") is None
        assert await store.get("openai") == ApiKeyCredential(key="sk-1")

    @pytest.mark.asyncio
    async def test_remove_absent_key(self, store: CredentialStore, store_path: Path) -> None:
        """Test that removing an absent key is a no-op."""
        await store.set("openai", ApiKeyCredential(key="sk-1"))

        await store.remove("missing")

        assert json.loads(store_path.read_text()) == {"openai": {"type": "api", "key": "sk-1"}}

    @pytest.mark.asyncio
    async def test_corrupt_file_is_empty(self, store: CredentialStore, store_path: Path) -> None:
        """Test that unparseable content reads as empty and is replaced on write."""
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json")

        assert await store.all() == {}

        await store.set("openai", ApiKeyCredential(key="sk-1"))
        assert json.loads(store_path.read_text()) == {"openai": {"type": "api", "key": "sk-1"}}

    @pytest.mark.asyncio
    async def test_invalid_entry_skipped_but_preserved(
        self, store: CredentialStore, store_path: Path
    ) -> None:
        """Test that unknown record types are skipped on read and kept on write."""
        store_path.parent.mkdir(parents=True)
        store_path.write_text(json.dumps({"future": {"type": "future-kind", "x": 1}}))

        assert await store.get("future") is None
        assert await store.all() == {}

        await store.set("openai", ApiKeyCredential(key="sk-1"))
        assert "future" in json.loads(store_path.read_text())

    @pytest.mark.asyncio
    async def test_persistence_across_instances(self, store_path: Path) -> None:
        """Test that credentials persist across store instances."""
        await CredentialStore(store_path).set("servicenow", create_oauth_credential())

        assert await CredentialStore(store_path).get("servicenow") == create_oauth_credential()

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
    @pytest.mark.asyncio
    async def test_write_failure_is_fatal(self, tmp_path: Path) -> None:
        """Test that an unwritable location raises instead of dropping data."""
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        store = CredentialStore(locked / "auth.json")

        try:
            with pytest.raises(CredentialStoreError, match="Failed to write"):
                await store.set("servicenow", create_oauth_credential())
        finally:
            locked.chmod(0o700)

    @pytest.mark.asyncio
    async def test_write_failure_when_parent_is_file(self, tmp_path: Path) -> None:
        """Test that a path under a regular file raises CredentialStoreError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = CredentialStore(blocker / "auth.json")

        with pytest.raises(CredentialStoreError):
            await store.set("servicenow", create_oauth_credential())
