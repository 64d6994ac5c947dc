"""Bring a freshly started CouchDB server into the state the application expects.

The bootstrap is a fixed sequence of idempotent steps:

1. wait for the server to answer,
2. resolve the server administrator (create one when the server is in
   admin party, otherwise verify the stored credentials and ask for new
   ones when they are rejected),
3. create the ``app`` database, lock it down and write the config document,
4. create the ``plugins`` database and lock it down.

Re-running the whole sequence is the recovery path for a failed run.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Final, Protocol, cast

import msgspec
import rure

from .client import CouchClient, ServerEndpoint, quote_segment
from .config import APP_ADMIN_USERNAME, AdminUser, BootstrapConfig
from .credentials import AdminCredentials, CredentialStore, FileCredentialStore, generate_password
from .exceptions import (
    AuthenticationError,
    CouchstrapError,
    InputError,
    PersistenceError,
    ProvisioningConflictError,
    ProvisioningError,
)
from .http import Status, is_auth_failure, is_exists, is_success
from .probe import wait_until_reachable
from .prompts import ConsolePrompter, Prompter, require_value
from .transport import BasicAuth, CouchResponse, Transport

logger = logging.getLogger(__name__)

if TYPE_CHECKING:

    class RureRegex(Protocol):
        def is_match(self, value: str) -> bool:  # pragma: no cover - typing helper
            ...


else:  # pragma: no cover - runtime alias derived from compiled pattern
    RureRegex = type(rure.compile("demo"))


PRIVILEGED_PATH: Final[str] = "/_users/_all_docs"
ADMIN_ROLE: Final[str] = "_admin"
APP_DATABASE: Final[str] = "app"
PLUGINS_DATABASE: Final[str] = "plugins"
APP_CONFIG_ID: Final[str] = "config"

_DATABASE_NAME_PATTERN: Final[RureRegex] = cast("RureRegex", rure.compile(r"^[a-z][a-z0-9_$()+/-]*$"))


def security_document() -> dict[str, Any]:
    """Access control restricting administration and membership to server admins."""

    return {
        "admins": {"roles": [ADMIN_ROLE]},
        "members": {"roles": [ADMIN_ROLE]},
    }


class AppConfigDocument(
    msgspec.Struct,
    frozen=True,
    rename={"id": "_id", "created_at": "createdAt", "updated_at": "updatedAt"},
):
    """Application configuration document stored in the ``app`` database."""

    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    config: dict[str, Any] = msgspec.field(default_factory=dict)


class ProvisionOutcome(str, enum.Enum):
    """Result of a create-if-absent step."""

    CREATED = "created"
    ALREADY_PRESENT = "already_present"
    FAILED = "failed"

    def __str__(self) -> str:  # pragma: no cover - convenience for logs
        return self.value


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    """What happened to a single provisioned resource."""

    resource: str
    outcome: ProvisionOutcome
    error: CouchstrapError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is not ProvisionOutcome.FAILED

    def raise_for_failure(self) -> "ProvisionResult":
        """Re-raise the original error of a failed step, otherwise return ``self``."""

        if self.error is not None:
            raise self.error
        return self


@dataclass(frozen=True, slots=True)
class InstallReport:
    """Summary of a completed bootstrap run."""

    endpoint: ServerEndpoint
    admin_party: bool
    username: str
    admin_user: str | None = None
    results: tuple[ProvisionResult, ...] = field(default_factory=tuple)

    def outcome_for(self, resource: str) -> ProvisionOutcome | None:
        for result in self.results:
            if result.resource == resource:
                return result.outcome
        return None


def _detail(response: CouchResponse) -> Any:
    payload = response.json()
    if isinstance(payload, dict):
        return payload.get("reason") or payload.get("error") or payload
    return payload


def _raise_for_status(response: CouchResponse, *, method: str, path: str) -> None:
    if is_success(response.status):
        return
    detail = _detail(response)
    if is_auth_failure(response.status):
        raise AuthenticationError(response.status, detail, method=method, path=path)
    if is_exists(response.status):
        raise ProvisioningConflictError(response.status, detail, method=method, path=path)
    raise ProvisioningError(response.status, detail, method=method, path=path)


class CouchInstaller:
    """Run the bootstrap steps against one CouchDB server."""

    def __init__(
        self,
        config: BootstrapConfig,
        *,
        store: CredentialStore,
        prompter: Prompter | None = None,
        transport: Transport | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.prompter = prompter or ConsolePrompter()
        self.client = CouchClient(
            ServerEndpoint.parse(config.couch.url),
            transport=transport,
            timeout=config.couch.request_timeout,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._probe_options: dict[str, Any] = {}
        if monotonic is not None:
            self._probe_options["clock"] = monotonic
        if sleep is not None:
            self._probe_options["sleep"] = sleep

    @property
    def endpoint(self) -> ServerEndpoint:
        return self.client.endpoint

    def _admins_path(self, username: str) -> str:
        return f"{self.config.couch.config_path.rstrip('/')}/admins/{quote_segment(username)}"

    async def wait_for_server(self) -> ServerEndpoint:
        endpoint = await wait_until_reachable(
            self.client,
            timeout=self.config.couch.poll_timeout,
            interval=self.config.couch.poll_interval,
            log_hint=self.config.couch.log_path,
            **self._probe_options,
        )
        self.client = self.client.bind(endpoint)
        return endpoint

    async def is_admin_party(self) -> bool:
        """Return ``True`` when privileged resources answer without credentials."""

        response = await self.client.head(PRIVILEGED_PATH)
        return response.status == Status.OK

    async def check_credentials(self, credentials: AdminCredentials | None) -> bool:
        """Return ``True`` when ``credentials`` unlock the privileged resource."""

        if credentials is None:
            return False
        response = await self.client.head(PRIVILEGED_PATH, auth=credentials.auth())
        return response.status == Status.OK

    async def update_credentials(self) -> AdminCredentials:
        """Verify the stored credentials, asking the operator for new ones when rejected.

        The operator gets ``max_credential_attempts`` tries. Non-interactive
        runs fail on the first rejection.
        """

        credentials = await self.store.get()
        attempts = 0
        while not await self.check_credentials(credentials):
            if not self.config.interactive:
                raise AuthenticationError(
                    Status.UNAUTHORIZED,
                    "stored CouchDB admin credentials are missing or rejected and prompting is disabled",
                    method="HEAD",
                    path=PRIVILEGED_PATH,
                )
            if attempts >= self.config.max_credential_attempts:
                raise AuthenticationError(
                    Status.UNAUTHORIZED,
                    f"CouchDB admin credentials rejected after {attempts} attempt(s)",
                    method="HEAD",
                    path=PRIVILEGED_PATH,
                )
            attempts += 1
            if credentials is not None:
                logger.warning("CouchDB rejected the admin credentials for %r", credentials.username)
            try:
                candidate = await self._prompt_credentials()
            except InputError as exc:
                logger.warning("Discarding admin credentials: %s", exc)
                credentials = None
                continue
            await self.store.set(candidate)
            credentials = await self.store.get()
        return cast(AdminCredentials, credentials)

    async def _prompt_credentials(self) -> AdminCredentials:
        logger.info("Please enter your CouchDB _admin credentials")
        username = require_value(await self.prompter.ask_visible("Username"), field="Username").strip()
        password = require_value(await self.prompter.ask_hidden("Password"), field="Password")
        return AdminCredentials(username=username, password=password).validate()

    async def create_internal_admin(self) -> AdminCredentials:
        """Create the internal server admin with a generated password and persist it.

        Only valid while the server is in admin party. When the password
        cannot be persisted the admin is deleted again so the server goes back
        to admin party instead of being guarded by a password nobody knows.
        """

        credentials = AdminCredentials(
            username=self.config.internal_username,
            password=generate_password(),
        ).validate()
        path = self._admins_path(credentials.username)
        response = await self.client.put(path, json=credentials.password)
        _raise_for_status(response, method="PUT", path=path)
        try:
            await self.store.set(credentials)
        except PersistenceError:
            await self._remove_admin(credentials)
            raise
        logger.info("Created internal CouchDB admin %r", credentials.username)
        return credentials

    async def _remove_admin(self, credentials: AdminCredentials) -> None:
        path = self._admins_path(credentials.username)
        try:
            response = await self.client.delete(path, auth=credentials.auth())
            _raise_for_status(response, method="DELETE", path=path)
        except CouchstrapError as exc:
            logger.error("Could not remove internal CouchDB admin %r: %s", credentials.username, exc)
        else:
            logger.warning("Removed internal CouchDB admin %r after failing to persist it", credentials.username)

    async def resolve_admin_user(self) -> AdminUser:
        """Pick the application admin from configuration, the fallback identity or a prompt."""

        if self.config.admin_password is not None:
            password = require_value(self.config.admin_password, field="admin_password")
            return AdminUser(name=APP_ADMIN_USERNAME, password=password)
        if not self.config.interactive:
            if self.config.fallback_admin_password is None:
                raise InputError("admin_password or fallback_admin_password is required when prompting is disabled")
            password = require_value(self.config.fallback_admin_password, field="fallback_admin_password")
            return AdminUser(name=APP_ADMIN_USERNAME, password=password)
        password = await self.prompter.ask_hidden("Please set an admin password")
        return AdminUser(name=APP_ADMIN_USERNAME, password=require_value(password, field="Admin password"))

    async def create_admin_user(self, credentials: AdminCredentials, user: AdminUser | None = None) -> AdminUser:
        """Register the application admin as a CouchDB server admin."""

        if user is None:
            user = await self.resolve_admin_user()
        path = self._admins_path(user.name)
        response = await self.client.put(path, json=user.password, auth=credentials.auth())
        _raise_for_status(response, method="PUT", path=path)
        logger.info("Registered application admin %r", user.name)
        return user

    async def setup_users(self) -> tuple[bool, AdminCredentials, AdminUser | None]:
        party = await self.is_admin_party()
        if party:
            logger.info("CouchDB is in admin party, creating admin users")
            # The app admin must be known before the server stops being open.
            user = await self.resolve_admin_user()
            credentials = await self.create_internal_admin()
            await self.create_admin_user(credentials, user)
            return True, credentials, user
        return False, await self.update_credentials(), None

    async def ensure_database(self, name: str, credentials: AdminCredentials) -> ProvisionResult:
        """Create database ``name`` unless it exists and (re)apply its security document."""

        if not _DATABASE_NAME_PATTERN.is_match(name):
            return ProvisionResult(name, ProvisionOutcome.FAILED, InputError(f"Invalid database name {name!r}"))
        auth = credentials.auth()
        path = "/" + quote_segment(name)
        try:
            response = await self.client.put(path, auth=auth)
            if is_exists(response.status):
                outcome = ProvisionOutcome.ALREADY_PRESENT
            else:
                _raise_for_status(response, method="PUT", path=path)
                outcome = ProvisionOutcome.CREATED
            await self._apply_security(path, auth)
        except CouchstrapError as exc:
            logger.error("Provisioning database %r failed: %s", name, exc)
            return ProvisionResult(name, ProvisionOutcome.FAILED, exc)
        if outcome is ProvisionOutcome.CREATED:
            logger.info("Created database %r", name)
        else:
            logger.info("Database %r already present", name)
        return ProvisionResult(name, outcome)

    async def _apply_security(self, database_path: str, auth: BasicAuth) -> None:
        path = f"{database_path}/_security"
        response = await self.client.put(path, json=security_document(), auth=auth)
        _raise_for_status(response, method="PUT", path=path)

    async def ensure_app_config(self, credentials: AdminCredentials, app_name: str | None = None) -> ProvisionResult:
        """Write the application config document unless one already exists."""

        resource = f"{APP_DATABASE}/{APP_CONFIG_ID}"
        now = self._clock()
        document = AppConfigDocument(
            id=APP_CONFIG_ID,
            name=app_name if app_name is not None else self.config.app.name,
            created_at=now,
            updated_at=now,
        )
        path = f"/{quote_segment(APP_DATABASE)}/{quote_segment(APP_CONFIG_ID)}"
        try:
            response = await self.client.put(path, json=document, auth=credentials.auth())
            if response.status == Status.CONFLICT:
                logger.info("Application config document already present")
                return ProvisionResult(resource, ProvisionOutcome.ALREADY_PRESENT)
            _raise_for_status(response, method="PUT", path=path)
        except CouchstrapError as exc:
            logger.error("Writing application config failed: %s", exc)
            return ProvisionResult(resource, ProvisionOutcome.FAILED, exc)
        logger.info("Created application config document for %r", document.name)
        return ProvisionResult(resource, ProvisionOutcome.CREATED)

    async def setup_app(self, credentials: AdminCredentials) -> tuple[ProvisionResult, ...]:
        database = (await self.ensure_database(APP_DATABASE, credentials)).raise_for_failure()
        document = (await self.ensure_app_config(credentials)).raise_for_failure()
        return database, document

    async def setup_plugins(self, credentials: AdminCredentials) -> ProvisionResult:
        return (await self.ensure_database(PLUGINS_DATABASE, credentials)).raise_for_failure()

    async def install(self) -> InstallReport:
        """Run every bootstrap step in order, stopping at the first failure."""

        endpoint = await self.wait_for_server()
        party, credentials, user = await self.setup_users()
        results = await self.setup_app(credentials)
        plugins = await self.setup_plugins(credentials)
        logger.info("CouchDB bootstrap complete")
        return InstallReport(
            endpoint=endpoint,
            admin_party=party,
            username=credentials.username,
            admin_user=user.name if user is not None else None,
            results=(*results, plugins),
        )


async def install(
    config: BootstrapConfig,
    *,
    store: CredentialStore | None = None,
    prompter: Prompter | None = None,
    transport: Transport | None = None,
) -> InstallReport:
    """Bootstrap the server described by ``config``.

    Credentials are kept in ``config.credentials_path`` unless ``store`` is given.
    """

    installer = CouchInstaller(
        config,
        store=store or FileCredentialStore(config.credentials_path),
        prompter=prompter,
        transport=transport,
    )
    return await installer.install()


__all__ = [
    "ADMIN_ROLE",
    "APP_CONFIG_ID",
    "APP_DATABASE",
    "PLUGINS_DATABASE",
    "PRIVILEGED_PATH",
    "AppConfigDocument",
    "CouchInstaller",
    "InstallReport",
    "ProvisionOutcome",
    "ProvisionResult",
    "install",
    "security_document",
]
