"""Provider credential resolution.

A credential is looked up for ``(username, account_index)`` by asking an
ordered list of providers; the first one that answers wins.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence

from dnsguard.settings import get_settings

if TYPE_CHECKING:
    from dnsguard.services.kv_store import KVStore

log = logging.getLogger(__name__)

USER_TOKENS_PREFIX = "USER_TOKENS:"


@dataclass(frozen=True)
class Credential:
    token: str | None = None
    email: str | None = None
    key: str | None = None
    source: str = ""

    @property
    def is_global_key(self) -> bool:
        return self.key is not None

    def headers(self) -> dict[str, str]:
        if self.is_global_key:
            return {"X-Auth-Email": self.email or "", "X-Auth-Key": self.key or ""}
        return {"Authorization": f"Bearer {self.token}"}


def credential_from_entry(entry: Any, source: str = "") -> Credential | None:
    """Build a credential from a stored token entry.

    Accepted shapes: ``{"token": ...}``, ``{"type": "global_key", "email": ...,
    "key": ...}`` and a bare token string.
    """
    if isinstance(entry, str):
        return Credential(token=entry, source=source) if entry else None
    if not isinstance(entry, dict):
        return None
    if entry.get("type") == "global_key":
        key = entry.get("key") or entry.get("token")
        if not key:
            return None
        return Credential(email=entry.get("email"), key=key, source=source)
    token = entry.get("token")
    return Credential(token=token, source=source) if token else None


class CredentialProvider(Protocol):
    def resolve(self, username: str, account_index: int) -> Credential | None: ...


class UserTokenProvider:
    """Credentials a user saved for their own provider accounts."""

    def __init__(self, kv: KVStore):
        self.kv = kv

    def resolve(self, username: str, account_index: int) -> Credential | None:
        entries = self.kv.get(f"{USER_TOKENS_PREFIX}{username}")
        if not isinstance(entries, list):
            return None
        for entry in entries:
            if isinstance(entry, dict) and entry.get("id") == account_index:
                return credential_from_entry(entry, source="user")
        return None


class EnvironmentProvider:
    """``CF_API_TOKEN`` / ``CF_API_TOKEN<n>`` for the administrative identity only."""

    def __init__(self, admin_username: str, environ: Mapping[str, str] | None = None):
        self.admin_username = admin_username
        self.environ = environ if environ is not None else os.environ

    def resolve(self, username: str, account_index: int) -> Credential | None:
        if username != self.admin_username:
            return None
        var = f"CF_API_TOKEN{account_index}" if account_index > 0 else "CF_API_TOKEN"
        token = self.environ.get(var)
        if not token:
            return None
        return Credential(token=token, source=f"env:{var}")


class CredentialChain:
    def __init__(self, providers: Sequence[CredentialProvider]):
        self.providers = list(providers)

    def resolve(self, username: str, account_index: int = 0) -> Credential | None:
        for provider in self.providers:
            credential = provider.resolve(username, account_index)
            if credential is not None:
                log.debug(
                    f"Resolved credential for {username}/{account_index} from {credential.source}"
                )
                return credential
        return None


def default_chain(kv: KVStore) -> CredentialChain:
    settings = get_settings()
    return CredentialChain([UserTokenProvider(kv), EnvironmentProvider(settings.admin_username)])
