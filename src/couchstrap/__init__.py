"""Idempotent bootstrap of a CouchDB server for an application."""

from .client import CouchClient, Reachability, ServerEndpoint
from .config import AdminUser, AppSettings, BootstrapConfig, CouchConfig, load_config, load_config_from_env
from .credentials import AdminCredentials, CredentialStore, FileCredentialStore, generate_password
from .exceptions import (
    AuthenticationError,
    CouchstrapError,
    InputError,
    PersistenceError,
    ProvisioningConflictError,
    ProvisioningError,
    TransportError,
    UnreachableError,
)
from .installer import (
    AppConfigDocument,
    CouchInstaller,
    InstallReport,
    ProvisionOutcome,
    ProvisionResult,
    install,
    security_document,
)
from .probe import wait_until_reachable
from .prompts import ConsolePrompter, Prompter
from .transport import BasicAuth, CouchRequest, CouchResponse, Transport, urllib_transport

__all__ = [
    "AdminCredentials",
    "AdminUser",
    "AppConfigDocument",
    "AppSettings",
    "AuthenticationError",
    "BasicAuth",
    "BootstrapConfig",
    "ConsolePrompter",
    "CouchClient",
    "CouchConfig",
    "CouchInstaller",
    "CouchRequest",
    "CouchResponse",
    "CouchstrapError",
    "CredentialStore",
    "FileCredentialStore",
    "InputError",
    "InstallReport",
    "PersistenceError",
    "Prompter",
    "ProvisionOutcome",
    "ProvisionResult",
    "ProvisioningConflictError",
    "ProvisioningError",
    "Reachability",
    "ServerEndpoint",
    "Transport",
    "TransportError",
    "UnreachableError",
    "generate_password",
    "install",
    "load_config",
    "load_config_from_env",
    "security_document",
    "urllib_transport",
]
