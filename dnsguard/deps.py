"""Request dependencies shared by the API routers."""

from __future__ import annotations

from typing import Callable, Generator

from fastapi import Depends, Query, Request
from sqlalchemy.orm import Session

from dnsguard.db.session import get_db
from dnsguard.exceptions import Forbidden, NotAuthenticated
from dnsguard.models.user import User
from dnsguard.routers.auth import get_current_user
from dnsguard.services.cloudflare import CloudflareClient
from dnsguard.services.credentials import Credential, default_chain
from dnsguard.services.kv_store import KVStore
from dnsguard.services.schedules import ScheduleStore
from dnsguard.services.snapshots import SnapshotStore

NO_CREDENTIAL = "No provider credential is configured for this account."


def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    user = get_current_user(request, db)
    if not user:
        raise NotAuthenticated()
    return user


def get_kv(db: Session = Depends(get_db)) -> KVStore:
    return KVStore(db)


def get_snapshot_store(kv: KVStore = Depends(get_kv)) -> SnapshotStore:
    return SnapshotStore(kv)


def get_schedule_store(kv: KVStore = Depends(get_kv)) -> ScheduleStore:
    return ScheduleStore(kv)


def get_client_factory() -> Callable[[Credential], CloudflareClient]:
    return CloudflareClient


def get_provider_client(
    account: int = Query(0, ge=0),
    user: User = Depends(require_user),
    kv: KVStore = Depends(get_kv),
    client_factory: Callable[[Credential], CloudflareClient] = Depends(get_client_factory),
) -> Generator[CloudflareClient, None, None]:
    credential = default_chain(kv).resolve(user.username, account)
    if credential is None:
        raise Forbidden(NO_CREDENTIAL)
    client = client_factory(credential)
    try:
        yield client
    finally:
        client.close()


def get_optional_provider_client(
    account: int = Query(0, ge=0),
    user: User = Depends(require_user),
    kv: KVStore = Depends(get_kv),
    client_factory: Callable[[Credential], CloudflareClient] = Depends(get_client_factory),
) -> Generator[CloudflareClient | None, None, None]:
    """Like ``get_provider_client`` but yields ``None`` instead of refusing the request."""
    credential = default_chain(kv).resolve(user.username, account)
    if credential is None:
        yield None
        return
    client = client_factory(credential)
    try:
        yield client
    finally:
        client.close()
