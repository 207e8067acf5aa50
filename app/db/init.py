"""Process-wide MongoDB handle.

init_db() opens the client, registers the beanie models and builds the retry policy
used for store calls; close_db() releases it. Both are called from the app's
startup/shutdown hooks. Tests pass their own client and probe.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConnectionFailure, PyMongoError

from app.core.config import Settings, get_settings
from app.core.exceptions import ServiceUnavailableError
from app.core.logging import get_logger
from app.core.retry import ConnectivityProbe, RetryPolicy
from app.models.audit_log import AuditLog
from app.models.contact import Contact
from app.models.credit_balance import CreditBalance
from app.models.payment_record import PaymentRecord
from app.models.user import User

log = get_logger(__name__)

T = TypeVar("T")

DOCUMENT_MODELS = [
    User,
    Contact,
    CreditBalance,
    PaymentRecord,
    AuditLog,
]


class MongoConnectivityProbe:
    """Answers "is the store reachable" with a cheap ping."""

    def __init__(self, client, timeout: float = 1.0):
        self._client = client
        self._timeout = timeout

    async def is_online(self) -> bool:
        try:
            await asyncio.wait_for(self._client.admin.command("ping"), timeout=self._timeout)
            return True
        except (PyMongoError, asyncio.TimeoutError):
            return False


class _Handle:
    client = None
    retry: RetryPolicy | None = None


_handle = _Handle()


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def build_store_retry(settings: Settings, probe: ConnectivityProbe | None = None) -> RetryPolicy:
    # AutoReconnect, NetworkTimeout and ServerSelectionTimeoutError all derive from ConnectionFailure
    return RetryPolicy(
        transient=(ConnectionFailure,),
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        timeout=settings.store_timeout_seconds,
        probe=probe,
        name="store",
    )


async def init_db(
    settings: Settings | None = None,
    client=None,
    probe: ConnectivityProbe | None = None,
) -> None:
    settings = settings or get_settings()
    if client is None:
        kwargs = {"serverSelectionTimeoutMS": int(settings.store_timeout_seconds * 1000)}
        # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    _handle.client = client
    _handle.retry = build_store_retry(settings, probe or MongoConnectivityProbe(client))
    log.info("db_initialized", db=settings.mongodb_db_name)


async def close_db() -> None:
    if _handle.client is not None:
        _handle.client.close()
    _handle.client = None
    _handle.retry = None


def get_store_retry() -> RetryPolicy:
    if _handle.retry is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return _handle.retry


async def run_store(
    fn: Callable[[], Awaitable[T]],
    op: str,
    unavailable: type[ServiceUnavailableError] = ServiceUnavailableError,
) -> T:
    """Run a store call under the retry policy; exhausted transient failures raise `unavailable`."""
    policy = get_store_retry()
    try:
        return await policy.run(fn, op=op)
    except policy.unavailable_errors as e:
        log.error("store_unavailable", op=op, error=repr(e))
        raise unavailable() from e
