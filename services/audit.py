"""Consistency audit of the appliance's iSCSI configuration.

Finds targets with no extent mapped, extents with no target, targets with no
active sessions, and DISK extents whose backing zvol no longer exists. A
target without an extent is "orphaned"; if the matching dataset under the
parent dataset is also gone, it is safe to delete.
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class TargetInfo:
    id: int
    name: str
    has_dataset: bool = False
    dataset_path: str = ""


@dataclass
class ExtentInfo:
    id: int
    name: str
    disk: str = ""


@dataclass
class TargetConnectionInfo:
    target: TargetInfo
    has_extent: bool
    active_sessions: int
    extent: Optional[ExtentInfo] = None
    possibly_orphaned: bool = False


@dataclass
class IscsiAuditResult:
    targets_without_extents: list[TargetInfo] = field(default_factory=list)
    extents_without_targets: list[ExtentInfo] = field(default_factory=list)
    targets_without_connection: list[TargetConnectionInfo] = field(default_factory=list)
    orphaned_extents: list[ExtentInfo] = field(default_factory=list)
    orphaned_targets_with_dataset: list[TargetInfo] = field(default_factory=list)
    orphaned_targets_without_dataset: list[TargetInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def count_sessions(sessions: list[dict[str, Any]], target_ids: dict[str, int]) -> dict[int, int]:
    """Count sessions per target id.

    Depending on the middleware version a session names its target by
    numeric id, ``target_alias``, ``target_name`` or a full IQN.
    """
    counts: dict[int, int] = {}
    for s in sessions:
        if not isinstance(s, dict):
            continue
        target = s.get("target")
        if isinstance(target, int) and not isinstance(target, bool):
            counts[target] = counts.get(target, 0) + 1
            continue

        tid = None
        for key in ("target_alias", "target_name"):
            name = s.get(key)
            if name and name in target_ids:
                tid = target_ids[name]
                break
        if tid is None and isinstance(target, str) and ":" in target:
            # iqn.2005-10.org.freenas.ctl:<target name>
            tid = target_ids.get(target.rsplit(":", 1)[-1])
        if tid is not None:
            counts[tid] = counts.get(tid, 0) + 1
    return counts


def audit_iscsi(service, parent_dataset: str) -> IscsiAuditResult:
    result = IscsiAuditResult()
    parent = parent_dataset.rstrip("/")

    targets = service.query(service.shape.method("iscsi.target.query")) or []
    extents = service.query(service.shape.method("iscsi.extent.query")) or []
    associations = service.query(service.shape.method("iscsi.targetextent.query")) or []
    logger.info("audit: %d targets, %d extents, %d associations", len(targets), len(extents), len(associations))

    target_ids = {t.get("name"): t.get("id") for t in targets}
    extent_map = {e.get("id"): e for e in extents}

    try:
        sessions = count_sessions(service.iscsi_sessions(), target_ids)
    except Exception:
        logger.warning("audit: unable to fetch iscsi sessions", exc_info=True)
        sessions = {}

    targets_with_extents = set()
    extents_with_targets = set()
    target_to_extent: dict[int, dict[str, Any]] = {}
    for assoc in associations:
        targets_with_extents.add(assoc.get("target"))
        extents_with_targets.add(assoc.get("extent"))
        extent = extent_map.get(assoc.get("extent"))
        if extent is not None:
            target_to_extent[assoc.get("target")] = extent

    for t in targets:
        if t.get("id") in targets_with_extents:
            continue
        dataset_path = f"{parent}/{t.get('name')}"
        info = TargetInfo(id=t.get("id"), name=t.get("name"), dataset_path=dataset_path)
        info.has_dataset = service.dataset_exists(dataset_path)
        result.targets_without_extents.append(info)
        if info.has_dataset:
            result.orphaned_targets_with_dataset.append(info)
        else:
            result.orphaned_targets_without_dataset.append(info)

    for e in extents:
        if e.get("id") not in extents_with_targets:
            result.extents_without_targets.append(ExtentInfo(id=e.get("id"), name=e.get("name"), disk=e.get("disk") or ""))

    for t in targets:
        session_count = sessions.get(t.get("id"), 0)
        if session_count:
            continue
        extent = target_to_extent.get(t.get("id"))
        result.targets_without_connection.append(TargetConnectionInfo(
            target=TargetInfo(id=t.get("id"), name=t.get("name")),
            has_extent=t.get("id") in targets_with_extents,
            active_sessions=0,
            extent=ExtentInfo(id=extent.get("id"), name=extent.get("name"), disk=extent.get("disk") or "") if extent else None,
            possibly_orphaned=True,
        ))

    for e in extents:
        disk = e.get("disk") or ""
        if e.get("type") != "DISK" or not disk.startswith("zvol/"):
            continue
        try:
            exists = service.dataset_exists(disk[len("zvol/"):])
        except Exception:
            logger.warning("audit: unable to check zvol for extent %s", e.get("name"), exc_info=True)
            continue
        if not exists:
            result.orphaned_extents.append(ExtentInfo(id=e.get("id"), name=e.get("name"), disk=disk))

    return result


def cleanup_orphaned_targets(service, targets: list[TargetInfo], dry_run: bool = True) -> int:
    """Delete targets that have neither an extent nor a dataset.

    Returns the number deleted (or that would be deleted on a dry run).
    A failed delete is logged and not counted.
    """
    deleted = 0
    for t in targets:
        if dry_run:
            logger.info("[dry run] would delete iscsi target %s (%s)", t.id, t.name)
            deleted += 1
            continue
        try:
            service.iscsi_target_delete(t.id, force=True)
        except Exception:
            logger.exception("failed to delete iscsi target %s (%s)", t.id, t.name)
            continue
        logger.info("deleted iscsi target %s (%s)", t.id, t.name)
        deleted += 1
    return deleted
