from typing import Any, Iterable

PROPERTY_SENTINEL = {"value": "-", "rawvalue": "-", "source": "-"}


def _resolve(record: dict[str, Any], name: str) -> Any:
    if name in record:
        return record[name]
    nested = record.get("properties")
    if isinstance(nested, dict) and name in nested:
        return nested[name]
    return dict(PROPERTY_SENTINEL)


def normalize_properties(record: dict[str, Any], names: Iterable[str]) -> dict[str, dict[str, Any]]:
    """Build a ``{name: {value, rawvalue, source}}`` view of a query record.

    Dataset and snapshot records mix flat scalar fields (``name``, ``type``)
    with property objects (``{"value": ..., "rawvalue": ..., "source": ...}``)
    either at the top level or under ``properties``. Every requested name
    gets an entry; missing ones fall back to ``PROPERTY_SENTINEL``.
    """
    if not isinstance(record, dict):
        record = {}
    view: dict[str, dict[str, Any]] = {}
    for name in names:
        prop = _resolve(record, name)
        if not isinstance(prop, dict):
            prop = {"value": prop, "rawvalue": prop, "source": "-"}
        # dicts without a "value" key are returned as the appliance sent them
        view[name] = prop
    return view
