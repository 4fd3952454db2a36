from typing import Any

from config import settings, TRANSPORTS
from services.base_service import BaseStorageService
from services.middleware_client import MiddlewareClient
from services.shapes import RpcShape
from services.storage_service import StorageService
from utils.zfs import TrueNASMiddlewareClient


def _resolve_transport_name() -> str:
    transport = (settings.TRUENAS_TRANSPORT or "websocket").strip().lower()
    if transport not in TRANSPORTS:
        raise RuntimeError(f"Invalid TRUENAS_TRANSPORT value: {transport!r}")
    return transport


def make_client() -> Any:
    """Build an unconnected client for the configured transport.

    The websocket client must be connected (or used as a context manager)
    before the first call; the REST client is ready immediately.
    """
    transport = _resolve_transport_name()
    if transport == "websocket":
        return TrueNASMiddlewareClient()
    return MiddlewareClient()


def shape_from_settings() -> RpcShape:
    return RpcShape(
        dataset_update=settings.TRUENAS_DATASET_UPDATE_SHAPE,
        snapshot_update=settings.TRUENAS_SNAPSHOT_UPDATE_SHAPE,
        port_link=settings.TRUENAS_NVMET_PORT_LINK,
    )


def get_service(client: Any, cache: Any = None) -> BaseStorageService:
    service = StorageService(
        client,
        cache=cache,
        shape=shape_from_settings(),
        poll_interval_ms=settings.TRUENAS_JOB_POLL_INTERVAL_MS,
        fs_job_timeout=settings.TRUENAS_FS_JOB_TIMEOUT,
        version_ttl=settings.TRUENAS_VERSION_CACHE_TTL,
    )

    if not isinstance(service, BaseStorageService):
        raise RuntimeError(f"Invalid backend service type: {type(service)!r}")

    return service
