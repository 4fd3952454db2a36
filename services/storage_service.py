import logging
import threading
import time
from typing import Any, Callable, Iterable, Optional

from flask_caching.backends import SimpleCache

from services.base_service import BaseStorageService
from services.errors import ResourceNotFoundError, is_already_exists, is_not_found
from services.exports import ExportOperationsMixin
from services.jobs import DEFAULT_POLL_INTERVAL_MS, JobWaiter
from services.normalize import normalize_properties
from services.shapes import RpcShape, build_inherit_payload, build_update_payload
from services.version import VersionGate
from utils.names import split_snapshot_name

logger = logging.getLogger(__name__)

NVMET_MIN_VERSION = "25.04"


class StorageService(ExportOperationsMixin, BaseStorageService):
    """Idempotent lifecycle verbs on top of a middleware ``call`` capability.

    Create-style verbs treat "already exists" as success and delete-style
    verbs treat "not found" as success, so retried or concurrent requests
    converge on the same appliance state. Every other failure propagates
    unchanged. The appliance is the only serialization point; nothing here
    takes locks or keeps state between calls.

    ``client`` is anything with ``call(method, params)``: the websocket
    session in ``utils.zfs``, the REST client in ``services.middleware_client``
    or a test double.
    """

    def __init__(
        self,
        client: Any,
        cache: Any = None,
        shape: Optional[RpcShape] = None,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        fs_job_timeout: int = 30,
        version_ttl: int = 60,
    ) -> None:
        if client is None:
            raise RuntimeError("A middleware client is required")
        self.client = client
        self.shape = shape or RpcShape()
        self.poll_interval_ms = poll_interval_ms
        self.fs_job_timeout = fs_job_timeout
        self.jobs = JobWaiter(self.call, sleep=sleep, clock=clock)
        self.version = VersionGate(self.call, cache if cache is not None else SimpleCache(), ttl=version_ttl)

    # -- plumbing -----------------------------------------------------------

    def call(self, method: str, params: Iterable[Any] = ()) -> Any:
        logger.debug("rpc %s", method)
        return self.client.call(method, list(params))

    def _method(self, name: str) -> str:
        return self.shape.method(name)

    def query(self, method: str, filters: Optional[list] = None, options: Optional[dict] = None) -> Any:
        return self.call(method, [filters or [], options or {}])

    def find_resource_by_properties(self, method: str, match: Any) -> Optional[dict[str, Any]]:
        """Return the first record of ``method`` matching ``match``.

        ``match`` is either a dict of field values or a predicate.
        """
        if not match:
            return None
        results = self.query(method)
        if not isinstance(results, list):
            return None
        for item in results:
            if callable(match):
                if match(item):
                    return item
            elif all(item.get(k) == v for k, v in match.items()):
                return item
        return None

    def _query_one(self, method: str, filters: list) -> Optional[dict[str, Any]]:
        results = self.query(method, filters)
        return results[0] if results else None

    def _create(self, method: str, params: list, what: str) -> tuple[Any, bool]:
        """Issue a create; returns ``(result, existed)``."""
        try:
            return self.call(method, params), False
        except Exception as e:
            if not is_already_exists(e):
                raise
            logger.info("%s already exists: %s", what, e)
            return None, True

    def _delete(self, method: str, params: list, what: str) -> None:
        try:
            self.call(method, params)
        except Exception as e:
            if not is_not_found(e):
                raise
            logger.info("%s already absent: %s", what, e)

    # -- capabilities / version --------------------------------------------

    def capabilities(self) -> dict[str, bool]:
        caps = super().capabilities()
        caps["iscsi"] = True
        caps["nfs"] = True
        caps["nvmet"] = self.version.supports(NVMET_MIN_VERSION)
        return caps

    def get_system_version(self) -> str:
        return self.version.get_system_version()

    def get_is_scale(self) -> bool:
        return self.version.get_is_scale()

    # -- datasets -----------------------------------------------------------

    def dataset_create(self, name: str, properties: Optional[dict[str, Any]] = None) -> None:
        data = dict(properties or {})
        data["name"] = name
        self._create(self._method("dataset.create"), [data], f"dataset {name}")

    def dataset_delete(self, name: str, options: Optional[dict[str, Any]] = None) -> None:
        opts = {"recursive": False}
        opts.update(options or {})
        self._delete(self._method("dataset.delete"), [name, opts], f"dataset {name}")

    def dataset_set(self, name: str, properties: dict[str, Any]) -> Any:
        payload = build_update_payload(self.shape.dataset_update, properties)
        return self.call(self._method("dataset.update"), [name, payload])

    def dataset_inherit(self, name: str, prop: str) -> Any:
        payload = build_inherit_payload(self.shape.dataset_update, prop)
        return self.call(self._method("dataset.update"), [name, payload])

    def dataset_get(self, name: str, properties: Iterable[str]) -> dict[str, dict[str, Any]]:
        record = self._query_one(self._method("dataset.query"), [["id", "=", name]])
        if record is None:
            raise ResourceNotFoundError("dataset", name)
        return normalize_properties(record, properties)

    def dataset_exists(self, name: str) -> bool:
        return self._query_one(self._method("dataset.query"), [["id", "=", name]]) is not None

    def dataset_list(self, parent: Optional[str] = None) -> list[dict[str, Any]]:
        filters = [["id", "^", parent.rstrip("/") + "/"]] if parent else []
        return self.query(self._method("dataset.query"), filters) or []

    def dataset_destroy_snapshots(self, name: str, options: Optional[dict[str, Any]] = None) -> int:
        """Delete every snapshot of ``name``; returns how many were requested."""
        opts = {"defer": True}
        opts.update(options or {})
        snapshots = self.snapshot_list(name)
        for snap in snapshots:
            self.snapshot_delete(snap.get("id") or snap.get("name"), opts)
        return len(snapshots)

    # -- snapshots ----------------------------------------------------------

    def snapshot_create(self, name: str, data: Optional[dict[str, Any]] = None) -> None:
        dataset, label = split_snapshot_name(name)
        params = dict(data or {})
        params["dataset"] = dataset
        params["name"] = label
        self._create(self._method("snapshot.create"), [params], f"snapshot {name}")

    def snapshot_delete(self, name: str, options: Optional[dict[str, Any]] = None) -> None:
        split_snapshot_name(name)
        opts = {"defer": False}
        opts.update(options or {})
        self._delete(self._method("snapshot.delete"), [name, opts], f"snapshot {name}")

    def snapshot_set(self, name: str, properties: dict[str, Any]) -> Any:
        payload = build_update_payload(self.shape.snapshot_update, properties)
        return self.call(self._method("snapshot.update"), [name, payload])

    def snapshot_get(self, name: str, properties: Iterable[str]) -> dict[str, dict[str, Any]]:
        split_snapshot_name(name)
        record =self._query_one(self._method("snapshot.query"), [["id", "=", name]])
        if record is None:
            raise ResourceNotFoundError("snapshot", name)
        return normalize_properties(record, properties)

    def snapshot_list(self, dataset: Optional[str] = None) -> list[dict[str, Any]]:
        filters = [["dataset", "=", dataset]] if dataset else []
        return self.query(self._method("snapshot.query"), filters) or []

    def snapshot_rollback(self, name: str, options: Optional[dict[str, Any]] = None) -> Any:
        split_snapshot_name(name)
        return self.call(self._method("snapshot.rollback"), [name, dict(options or {})])

    # -- clones / replication ----------------------------------------------

    def clone_create(self, snapshot: str, dataset: str, data: Optional[dict[str, Any]] = None) -> None:
        split_snapshot_name(snapshot)
        params = dict(data or {})
        params["snapshot"] = snapshot
        params["dataset_dst"] = dataset
        self._create(self._method("snapshot.clone"), [params], f"clone {dataset}")

    def replication_run_onetime(self, data: dict[str, Any], wait: bool = False, timeout: float = 0) -> Any:
        job_id = self.call(self._method("replication.run_onetime"), [data])
        if not wait:
            return job_id
        return self.core_wait_for_job(job_id, timeout=timeout)

    # -- jobs ---------------------------------------------------------------

    def core_get_jobs(self, filters: Optional[list] = None) -> list[dict[str, Any]]:
        return self.jobs.get_jobs(filters)

    def core_wait_for_job(
        self,
        job_id: Any,
        timeout: float = 0,
        poll_interval_ms: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> dict[str, Any]:
        interval = self.poll_interval_ms if poll_interval_ms is None else poll_interval_ms
        return self.jobs.wait(job_id, timeout=timeout, poll_interval_ms=interval, cancel=cancel)

    # -- filesystem ---------------------------------------------------------

    def filesystem_setperm(self, data: dict[str, Any]) -> dict[str, Any]:
        job_id = self.call(self._method("filesystem.setperm"), [data])
        return self.core_wait_for_job(job_id, timeout=self.fs_job_timeout)

    def filesystem_chown(self, data: dict[str, Any]) -> dict[str, Any]:
        job_id = self.call(self._method("filesystem.chown"), [data])
        return self.core_wait_for_job(job_id, timeout=self.fs_job_timeout)
