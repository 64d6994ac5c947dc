from __future__ import annotations

import base64

import pytest
from msgspec import structs

from couchstrap.config import AdminUser
from couchstrap.credentials import PASSWORD_BYTES, AdminCredentials
from couchstrap.exceptions import (
    AuthenticationError,
    InputError,
    PersistenceError,
    ProvisioningError,
    TransportError,
)
from couchstrap.http import Status
from couchstrap.installer import (
    PRIVILEGED_PATH,
    ProvisionOutcome,
    ProvisionResult,
    security_document,
)
from couchstrap.serialization import json_decode, json_encode
from couchstrap.testing import FakeCouchServer, MemoryCredentialStore, ScriptedPrompter
from tests.support import make_config, make_installer

ROOT = AdminCredentials(username="root", password="secret")


def _guarded_server() -> FakeCouchServer:
    return FakeCouchServer(admins={ROOT.username: ROOT.password})


@pytest.mark.asyncio
async def test_is_admin_party_reflects_server_state() -> None:
    assert await make_installer(FakeCouchServer()).is_admin_party() is True
    assert await make_installer(_guarded_server()).is_admin_party() is False


@pytest.mark.asyncio
async def test_is_admin_party_uses_unauthenticated_head() -> None:
    server = FakeCouchServer()
    await make_installer(server).is_admin_party()
    request = server.requests[0]
    assert request.method == "HEAD"
    assert request.url.endswith(PRIVILEGED_PATH)
    assert "authorization" not in request.headers


@pytest.mark.asyncio
async def test_is_admin_party_propagates_transport_errors() -> None:
    with pytest.raises(TransportError):
        await make_installer(FakeCouchServer(listening=False)).is_admin_party()


@pytest.mark.asyncio
async def test_check_credentials_without_credentials_skips_network() -> None:
    server = _guarded_server()
    assert await make_installer(server).check_credentials(None) is False
    assert server.requests == []


@pytest.mark.asyncio
async def test_check_credentials_against_server() -> None:
    server = _guarded_server()
    installer = make_installer(server)
    assert await installer.check_credentials(ROOT) is True
    assert await installer.check_credentials(AdminCredentials(username="root", password="nope")) is False


@pytest.mark.asyncio
async def test_create_internal_admin_sets_password_and_persists() -> None:
    server = FakeCouchServer()
    store = MemoryCredentialStore()
    installer = make_installer(server, store=store)

    credentials = await installer.create_internal_admin()

    assert credentials.username == "_couchstrap"
    assert len(base64.b64decode(credentials.password)) == PASSWORD_BYTES
    assert server.admins == {"_couchstrap": credentials.password}
    assert store.writes == [credentials]
    request = server.calls("PUT", "/_config/admins/_couchstrap")[0]
    assert request.body == json_encode(credentials.password)
    assert await installer.check_credentials(credentials) is True


@pytest.mark.asyncio
async def test_create_internal_admin_honours_config_path() -> None:
    server = FakeCouchServer()
    server.override("PUT", "/_node/_local/_config/admins/_couchstrap", Status.OK, "")
    config = make_config(couch=structs.replace(make_config().couch, config_path="/_node/_local/_config/"))
    installer = make_installer(server, config=config)

    await installer.create_internal_admin()

    assert len(server.calls("PUT", "/_node/_local/_config/admins/_couchstrap")) == 1


@pytest.mark.asyncio
async def test_create_internal_admin_failure_does_not_persist() -> None:
    server = FakeCouchServer()
    server.override("PUT", "/_config/admins/_couchstrap", Status.INTERNAL_SERVER_ERROR, {"error": "boom"})
    store = MemoryCredentialStore()

    with pytest.raises(ProvisioningError) as excinfo:
        await make_installer(server, store=store).create_internal_admin()

    assert excinfo.value.status == 500
    assert store.writes == []


@pytest.mark.asyncio
async def test_create_internal_admin_rejected_is_fatal() -> None:
    with pytest.raises(AuthenticationError):
        await make_installer(_guarded_server()).create_internal_admin()


@pytest.mark.asyncio
async def test_create_internal_admin_persistence_failure_restores_admin_party() -> None:
    server = FakeCouchServer()
    store = MemoryCredentialStore(fail_writes=True)

    with pytest.raises(PersistenceError):
        await make_installer(server, store=store).create_internal_admin()

    assert server.admin_party
    delete = server.calls("DELETE", "/_config/admins/_couchstrap")
    assert len(delete) == 1
    assert "authorization" in delete[0].headers


@pytest.mark.asyncio
async def test_create_internal_admin_failed_rollback_keeps_persistence_error() -> None:
    server = FakeCouchServer()
    server.override("DELETE", "/_config/admins/_couchstrap", Status.INTERNAL_SERVER_ERROR, {"error": "boom"})

    with pytest.raises(PersistenceError):
        await make_installer(server, store=MemoryCredentialStore(fail_writes=True)).create_internal_admin()

    assert list(server.admins) == ["_couchstrap"]


@pytest.mark.asyncio
async def test_rotation_stops_after_one_prompt_when_new_credentials_work() -> None:
    server = _guarded_server()
    store = MemoryCredentialStore(AdminCredentials(username="root", password="stale"))
    prompter = ScriptedPrompter(visible=["root"], hidden=["secret"])
    installer = make_installer(server, store=store, prompter=prompter)

    credentials = await installer.update_credentials()

    assert credentials == ROOT
    assert store.writes == [ROOT]
    assert prompter.asked == [("visible", "Username"), ("hidden", "Password")]
    assert len(server.calls("HEAD", PRIVILEGED_PATH)) == 2


@pytest.mark.asyncio
async def test_rotation_accepts_valid_stored_credentials_without_prompting() -> None:
    server = _guarded_server()
    prompter = ScriptedPrompter()
    installer = make_installer(server, store=MemoryCredentialStore(ROOT), prompter=prompter)

    assert await installer.update_credentials() == ROOT
    assert prompter.asked == []


@pytest.mark.asyncio
async def test_rotation_is_bounded() -> None:
    server = _guarded_server()
    store = MemoryCredentialStore(AdminCredentials(username="root", password="stale"))
    prompter = ScriptedPrompter(visible=["root"] * 5, hidden=["wrong"] * 5)
    installer = make_installer(server, store=store, prompter=prompter, config=make_config(max_credential_attempts=3))

    with pytest.raises(AuthenticationError):
        await installer.update_credentials()

    assert len(prompter.asked) == 6
    assert len(server.calls("HEAD", PRIVILEGED_PATH)) == 4


@pytest.mark.asyncio
async def test_rotation_reprompts_after_blank_input() -> None:
    server = _guarded_server()
    store = MemoryCredentialStore()
    prompter = ScriptedPrompter(visible=["root", "root"], hidden=["", "secret"])
    installer = make_installer(server, store=store, prompter=prompter)

    assert await installer.update_credentials() == ROOT
    assert store.writes == [ROOT]
    assert len(server.calls("HEAD", PRIVILEGED_PATH)) == 1


@pytest.mark.asyncio
async def test_rotation_non_interactive_fails_without_prompting() -> None:
    server = _guarded_server()
    prompter = ScriptedPrompter(visible=["root"], hidden=["secret"])
    installer = make_installer(
        server,
        store=MemoryCredentialStore(AdminCredentials(username="root", password="stale")),
        prompter=prompter,
        config=make_config(interactive=False),
    )

    with pytest.raises(AuthenticationError):
        await installer.update_credentials()

    assert prompter.asked == []


@pytest.mark.asyncio
async def test_rotation_persistence_failure_aborts() -> None:
    server = _guarded_server()
    prompter = ScriptedPrompter(visible=["root"] * 3, hidden=["secret"] * 3)
    installer = make_installer(server, store=MemoryCredentialStore(fail_writes=True), prompter=prompter)

    with pytest.raises(PersistenceError):
        await installer.update_credentials()

    assert len(prompter.asked) == 2


@pytest.mark.asyncio
async def test_resolve_admin_user_sources() -> None:
    server = FakeCouchServer()

    configured = make_installer(server, config=make_config(admin_password="hunter2"))
    assert await configured.resolve_admin_user() == AdminUser(name="admin", password="hunter2")

    unattended = make_installer(server, config=make_config(interactive=False, fallback_admin_password="ci-only"))
    assert await unattended.resolve_admin_user() == AdminUser(name="admin", password="ci-only")

    prompter = ScriptedPrompter(hidden=["typed"])
    interactive = make_installer(server, prompter=prompter)
    assert await interactive.resolve_admin_user() == AdminUser(name="admin", password="typed")
    assert prompter.asked == [("hidden", "Please set an admin password")]


@pytest.mark.asyncio
async def test_resolve_admin_user_rejects_missing_values() -> None:
    server = FakeCouchServer()
    with pytest.raises(InputError):
        await make_installer(server, config=make_config(interactive=False)).resolve_admin_user()
    with pytest.raises(InputError):
        blank = make_config(interactive=False, fallback_admin_password=" ")
        await make_installer(server, config=blank).resolve_admin_user()
    with pytest.raises(InputError):
        await make_installer(server, prompter=ScriptedPrompter(hidden=[""])).resolve_admin_user()
    with pytest.raises(InputError):
        await make_installer(server, config=make_config(admin_password="")).resolve_admin_user()


@pytest.mark.asyncio
async def test_create_admin_user_authenticates_as_internal_admin() -> None:
    server = _guarded_server()
    installer = make_installer(server, config=make_config(admin_password="hunter2"))

    user = await installer.create_admin_user(ROOT)

    assert user.name == "admin"
    assert server.admins["admin"] == "hunter2"
    assert "authorization" in server.calls("PUT", "/_config/admins/admin")[0].headers


@pytest.mark.asyncio
async def test_create_admin_user_uses_resolved_user_without_prompting() -> None:
    server = _guarded_server()
    prompter = ScriptedPrompter()
    installer = make_installer(server, prompter=prompter)

    user = await installer.create_admin_user(ROOT, AdminUser(name="admin", password="chosen"))

    assert user == AdminUser(name="admin", password="chosen")
    assert server.admins["admin"] == "chosen"
    assert prompter.asked == []


@pytest.mark.asyncio
async def test_ensure_database_creates_and_locks_down() -> None:
    server = _guarded_server()
    installer = make_installer(server)

    result = await installer.ensure_database("app", ROOT)

    assert result == ProvisionResult("app", ProvisionOutcome.CREATED)
    assert server.databases["app"].security == security_document()


@pytest.mark.asyncio
async def test_ensure_database_existing_is_success_and_reapplies_security() -> None:
    server = _guarded_server()
    installer = make_installer(server)
    await installer.ensure_database("plugins", ROOT)
    server.databases["plugins"].security = {"members": {"names": ["guest"]}}

    result = await installer.ensure_database("plugins", ROOT)

    assert result.outcome is ProvisionOutcome.ALREADY_PRESENT
    assert result.ok
    assert server.databases["plugins"].security == security_document()
    assert len(server.calls("PUT", "/plugins/_security")) == 2


@pytest.mark.parametrize("name", ["app", "plugins", "user/abc", "a_b$c(1)+-"])
@pytest.mark.asyncio
async def test_security_document_only_grants_admin_role(name: str) -> None:
    server = _guarded_server()

    result = await make_installer(server).ensure_database(name, ROOT)

    assert result.outcome is ProvisionOutcome.CREATED
    assert server.databases[name].security == {
        "admins": {"roles": ["_admin"]},
        "members": {"roles": ["_admin"]},
    }


@pytest.mark.parametrize("name", ["", "App", "1db", "bad name"])
@pytest.mark.asyncio
async def test_ensure_database_rejects_invalid_names(name: str) -> None:
    server = _guarded_server()

    result = await make_installer(server).ensure_database(name, ROOT)

    assert result.outcome is ProvisionOutcome.FAILED
    assert isinstance(result.error, InputError)
    assert server.requests == []


@pytest.mark.asyncio
async def test_ensure_database_rejected_credentials_fail() -> None:
    server = _guarded_server()

    result = await make_installer(server).ensure_database("app", AdminCredentials(username="root", password="x"))

    assert result.outcome is ProvisionOutcome.FAILED
    assert isinstance(result.error, AuthenticationError)
    with pytest.raises(AuthenticationError) as excinfo:
        result.raise_for_failure()
    assert excinfo.value is result.error


@pytest.mark.asyncio
async def test_ensure_database_security_failure_fails() -> None:
    server = _guarded_server()
    server.override("PUT", "/app/_security", Status.INTERNAL_SERVER_ERROR, {"error": "boom"})

    result = await make_installer(server).ensure_database("app", ROOT)

    assert result.outcome is ProvisionOutcome.FAILED
    assert isinstance(result.error, ProvisioningError)
    assert result.error.path == "/app/_security"


@pytest.mark.asyncio
async def test_ensure_database_transport_failure_fails() -> None:
    server = FakeCouchServer(listening=False)

    result = await make_installer(server).ensure_database("app", ROOT)

    assert result.outcome is ProvisionOutcome.FAILED
    assert isinstance(result.error, TransportError)


@pytest.mark.asyncio
async def test_ensure_app_config_writes_document_once() -> None:
    server = _guarded_server()
    installer = make_installer(server)
    await installer.ensure_database("app", ROOT)

    first = await installer.ensure_app_config(ROOT)
    second = await installer.ensure_app_config(ROOT, "renamed")

    assert first.outcome is ProvisionOutcome.CREATED
    assert second.outcome is ProvisionOutcome.ALREADY_PRESENT
    assert server.databases["app"].documents["config"] == {
        "_id": "config",
        "name": "demo",
        "createdAt": "2026-01-02T03:04:05Z",
        "updatedAt": "2026-01-02T03:04:05Z",
        "config": {},
    }


@pytest.mark.asyncio
async def test_ensure_app_config_body_uses_couch_field_names() -> None:
    server = _guarded_server()
    installer = make_installer(server)
    await installer.ensure_database("app", ROOT)

    await installer.ensure_app_config(ROOT, "shop")

    body = json_decode(server.calls("PUT", "/app/config")[0].body)
    assert set(body) == {"_id", "name", "createdAt", "updatedAt", "config"}
    assert body["name"] == "shop"


@pytest.mark.asyncio
async def test_ensure_app_config_missing_database_fails() -> None:
    server = _guarded_server()

    result = await make_installer(server).ensure_app_config(ROOT)

    assert result.outcome is ProvisionOutcome.FAILED
    assert isinstance(result.error, ProvisioningError)
    assert result.error.status == 404
