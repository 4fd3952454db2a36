"""Wire shapes for the middleware calls whose payloads differ by API generation.

Two property-update encodings are in use and they are not interchangeable:

``operations``
    system properties as top-level keys, user properties as a list under
    ``user_properties_update``: ``[{"key": k, "value": v}]`` to set and
    ``[{"key": k, "remove": True}]`` to clear.

``nested``
    every property as a top-level key; user properties map to their string
    value and are cleared by mapping them to ``None``.

Both request inheritance of a system property with ``{"source": "INHERIT"}``.
"""
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

from services.properties import is_user_property, split_properties, stringify, to_key_value_list

OPERATIONS = "operations"
NESTED = "nested"
UPDATE_SHAPES = (OPERATIONS, NESTED)

PORT_SUBSYS = "port_subsys"
ADD_SUBSYSTEMS = "add_subsystems"
PORT_LINK_STRATEGIES = (PORT_SUBSYS, ADD_SUBSYSTEMS)

DEFAULT_METHODS = MappingProxyType({
    "dataset.create": "pool.dataset.create",
    "dataset.delete": "pool.dataset.delete",
    "dataset.update": "pool.dataset.update",
    "dataset.query": "pool.dataset.query",
    "snapshot.create": "zfs.snapshot.create",
    "snapshot.delete": "zfs.snapshot.delete",
    "snapshot.update": "zfs.snapshot.update",
    "snapshot.query": "zfs.snapshot.query",
    "snapshot.clone": "zfs.snapshot.clone",
    "snapshot.rollback": "zfs.snapshot.rollback",
    "replication.run_onetime": "replication.run_onetime",
    "filesystem.setperm": "filesystem.setperm",
    "filesystem.chown": "filesystem.chown",
    "nvmet.subsystem.create": "nvmet.subsystem.create",
    "nvmet.subsystem.delete": "nvmet.subsystem.delete",
    "nvmet.subsystem.query": "nvmet.subsystem.query",
    "nvmet.namespace.create": "nvmet.namespace.create",
    "nvmet.namespace.delete": "nvmet.namespace.delete",
    "nvmet.namespace.query": "nvmet.namespace.query",
    "nvmet.port.query": "nvmet.port.query",
    "nvmet.port.add_subsystems": "nvmet.port.add_subsystems",
    "nvmet.port_subsys.create": "nvmet.port_subsys.create",
    "nvmet.port_subsys.delete": "nvmet.port_subsys.delete",
    "nvmet.port_subsys.query": "nvmet.port_subsys.query",
    "iscsi.target.create": "iscsi.target.create",
    "iscsi.target.delete": "iscsi.target.delete",
    "iscsi.target.query": "iscsi.target.query",
    "iscsi.extent.create": "iscsi.extent.create",
    "iscsi.extent.delete": "iscsi.extent.delete",
    "iscsi.extent.query": "iscsi.extent.query",
    "iscsi.targetextent.create": "iscsi.targetextent.create",
    "iscsi.targetextent.delete": "iscsi.targetextent.delete",
    "iscsi.targetextent.query": "iscsi.targetextent.query",
    "iscsi.global.sessions": "iscsi.global.sessions",
    "sharing.nfs.create": "sharing.nfs.create",
    "sharing.nfs.delete": "sharing.nfs.delete",
    "sharing.nfs.query": "sharing.nfs.query",
})


@dataclass(frozen=True)
class RpcShape:
    dataset_update: str = OPERATIONS
    snapshot_update: str = OPERATIONS
    port_link: str = PORT_SUBSYS
    methods: Mapping[str, str] = field(default_factory=lambda: DEFAULT_METHODS)

    def __post_init__(self) -> None:
        for attr in ("dataset_update", "snapshot_update"):
            if getattr(self, attr) not in UPDATE_SHAPES:
                raise ValueError(f"{attr} must be one of {UPDATE_SHAPES}; got {getattr(self, attr)!r}")
        if self.port_link not in PORT_LINK_STRATEGIES:
            raise ValueError(f"port_link must be one of {PORT_LINK_STRATEGIES}; got {self.port_link!r}")

    def method(self, name: str) -> str:
        return self.methods.get(name) or DEFAULT_METHODS[name]

    def with_methods(self, overrides: Mapping[str, str]) -> "RpcShape":
        """Return a copy with some logical methods remapped.

        e.g. ``shape.with_methods({"snapshot.create": "pool.snapshot.create"})``
        """
        unknown = set(overrides) - set(DEFAULT_METHODS)
        if unknown:
            raise ValueError(f"unknown logical methods: {sorted(unknown)}")
        merged = dict(self.methods)
        merged.update(overrides)
        return replace(self, methods=MappingProxyType(merged))


SHAPES = {
    OPERATIONS: RpcShape(),
    NESTED: RpcShape(dataset_update=NESTED, snapshot_update=NESTED),
}


def build_update_payload(shape: str, properties: dict[str, Any]) -> dict[str, Any]:
    system, user = split_properties(properties)
    payload = dict(system)
    if shape == OPERATIONS:
        if user:
            payload["user_properties_update"] = to_key_value_list(user)
    elif shape == NESTED:
        payload.update({name: stringify(value) for name, value in user.items()})
    else:
        raise ValueError(f"unknown property update shape: {shape!r}")
    return payload


def build_inherit_payload(shape: str, prop: str) -> dict[str, Any]:
    if not is_user_property(prop):
        return {prop: {"source": "INHERIT"}}
    # user properties have nothing to inherit; clearing them is the closest equivalent
    if shape == OPERATIONS:
        return {"user_properties_update": [{"key": prop, "remove": True}]}
    if shape == NESTED:
        return {prop: None}
    raise ValueError(f"unknown property update shape: {shape!r}")
