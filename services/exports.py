"""Block and file export objects: NVMe-oF, iSCSI and NFS.

Create verbs are create-or-get: when the appliance answers "already
exists" the existing record is looked up by its natural key (name, device
path, share path, or the target/extent pair) and returned, because callers
of create expect a record back.
"""
import logging
from typing import Any, Optional

from services.errors import ResourceNotFoundError
from services.shapes import ADD_SUBSYSTEMS
from utils.names import normalize_zvol_path

logger = logging.getLogger(__name__)


class ExportOperationsMixin:
    """Requires ``call``, ``query``, ``_create``, ``_delete``, ``_method``, ``_query_one``."""

    def _create_or_get(self, method: str, payload: dict[str, Any], what: str, lookup) -> Any:
        result, existed = self._create(self._method(method), [payload], what)
        if not existed:
            return result
        return lookup()

    def _require(self, record: Optional[dict[str, Any]], kind: str, key: Any) -> dict[str, Any]:
        if record is None:
            raise ResourceNotFoundError(kind, key)
        return record

    # -- NVMe-oF ------------------------------------------------------------

    def nvmet_subsys_list(self, options: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        return self.query(self._method("nvmet.subsystem.query"), [], options) or []

    def nvmet_subsys_create(self, name: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        payload = dict(data or {})
        payload["name"] = name
        payload.setdefault("allow_any_host", True)
        return self._create_or_get(
            "nvmet.subsystem.create", payload, f"nvmet subsystem {name}",
            lambda: self.nvmet_subsys_get_by_name(name),
        )

    def nvmet_subsys_get_by_name(self, name: str) -> dict[str, Any]:
        record = self._query_one(self._method("nvmet.subsystem.query"), [["name", "=", name]])
        return self._require(record, "nvmet subsystem", name)

    def nvmet_subsys_delete(self, subsys_id: int) -> None:
        self._delete(self._method("nvmet.subsystem.delete"), [subsys_id], f"nvmet subsystem {subsys_id}")

    def nvmet_namespace_create(self, zvol: str, subsys_id: int, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        device_path = normalize_zvol_path(zvol)
        payload = dict(data or {})
        payload["device_path"] = device_path
        payload["device_type"] = "ZVOL"
        payload["subsys_id"] = subsys_id
        return self._create_or_get(
            "nvmet.namespace.create", payload, f"nvmet namespace {device_path}",
            lambda: self.nvmet_namespace_get_by_device_path(device_path),
        )

    def nvmet_namespace_get_by_device_path(self, zvol: str) -> dict[str, Any]:
        device_path = normalize_zvol_path(zvol)
        record = self._query_one(self._method("nvmet.namespace.query"), [["device_path", "=", device_path]])
        return self._require(record, "nvmet namespace", device_path)

    def nvmet_namespace_delete(self, namespace_id: int) -> None:
        self._delete(self._method("nvmet.namespace.delete"), [namespace_id], f"nvmet namespace {namespace_id}")

    def nvmet_port_list(self) -> list[dict[str, Any]]:
        return self.query(self._method("nvmet.port.query")) or []

    def nvmet_port_subsys_create(self, port_id: int, subsys_id: int) -> Any:
        """Expose a subsystem on a port.

        Two wire forms are in circulation and the strategy is chosen by
        ``RpcShape.port_link``.
        """
        if self.shape.port_link == ADD_SUBSYSTEMS:
            method = "nvmet.port.add_subsystems"
            payload = {"port": port_id, "subsys": subsys_id}
        else:
            method = "nvmet.port_subsys.create"
            payload = {"port_id": port_id, "subsys_id": subsys_id}
        return self._create_or_get(
            method, payload, f"nvmet port {port_id} link to subsystem {subsys_id}",
            lambda: self.nvmet_port_subsys_find(port_id, subsys_id),
        )

    def nvmet_port_subsys_find(self, port_id: int, subsys_id: int) -> dict[str, Any]:
        record = self._query_one(
            self._method("nvmet.port_subsys.query"),
            [["port_id", "=", port_id], ["subsys_id", "=", subsys_id]],
        )
        return self._require(record, "nvmet port link", (port_id, subsys_id))

    def nvmet_port_subsys_delete(self, link_id: int) -> None:
        self._delete(self._method("nvmet.port_subsys.delete"), [link_id], f"nvmet port link {link_id}")

    # -- iSCSI --------------------------------------------------------------

    def iscsi_target_create(self, name: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        payload = dict(data or {})
        payload["name"] = name
        payload.setdefault("groups", [])
        return self._create_or_get(
            "iscsi.target.create", payload, f"iscsi target {name}",
            lambda: self.iscsi_target_get_by_name(name),
        )

    def iscsi_target_get_by_name(self, name: str) -> dict[str, Any]:
        record = self._query_one(self._method("iscsi.target.query"), [["name", "=", name]])
        return self._require(record, "iscsi target", name)

    def iscsi_target_delete(self, target_id: int, force: bool = False) -> None:
        self._delete(self._method("iscsi.target.delete"), [target_id, force], f"iscsi target {target_id}")

    def iscsi_extent_create(self, name: str, disk: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        payload = dict(data or {})
        payload["name"] = name
        payload["type"] = "DISK"
        payload["disk"] = normalize_zvol_path(disk)
        return self._create_or_get(
            "iscsi.extent.create", payload, f"iscsi extent {name}",
            lambda: self.iscsi_extent_get_by_name(name),
        )

    def iscsi_extent_get_by_name(self, name: str) -> dict[str, Any]:
        record = self._query_one(self._method("iscsi.extent.query"), [["name", "=", name]])
        return self._require(record, "iscsi extent", name)

    def iscsi_extent_delete(self, extent_id: int, remove: bool = False, force: bool = False) -> None:
        self._delete(self._method("iscsi.extent.delete"), [extent_id, remove, force], f"iscsi extent {extent_id}")

    def iscsi_targetextent_create(self, target_id: int, extent_id: int, lunid: int = 0) -> dict[str, Any]:
        payload = {"target": target_id, "extent": extent_id, "lunid": lunid}
        return self._create_or_get(
            "iscsi.targetextent.create", payload, f"iscsi target {target_id} extent {extent_id}",
            lambda: self.iscsi_targetextent_find(target_id, extent_id),
        )

    def iscsi_targetextent_find(self, target_id: int, extent_id: int) -> dict[str, Any]:
        record = self._query_one(
            self._method("iscsi.targetextent.query"),
            [["target", "=", target_id], ["extent", "=", extent_id]],
        )
        return self._require(record, "iscsi target extent", (target_id, extent_id))

    def iscsi_targetextent_delete(self, assoc_id: int, force: bool = False) -> None:
        self._delete(self._method("iscsi.targetextent.delete"), [assoc_id, force], f"iscsi target extent {assoc_id}")

    def iscsi_sessions(self) -> list[dict[str, Any]]:
        return self.call(self._method("iscsi.global.sessions")) or []

    # -- NFS ----------------------------------------------------------------

    def nfs_share_create(self, path: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        payload = dict(data or {})
        payload["path"] = path
        return self._create_or_get(
            "sharing.nfs.create", payload, f"nfs share {path}",
            lambda: self.nfs_share_get_by_path(path),
        )

    def nfs_share_get_by_path(self, path: str) -> dict[str, Any]:
        record = self._query_one(self._method("sharing.nfs.query"), [["path", "=", path]])
        return self._require(record, "nfs share", path)

    def nfs_share_delete(self, share_id: int) -> None:
        self._delete(self._method("sharing.nfs.delete"), [share_id], f"nfs share {share_id}")
