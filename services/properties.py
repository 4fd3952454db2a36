from typing import Any


def is_user_property(name: str) -> bool:
    """User properties are namespaced with a colon, e.g. ``org.example:owner``."""
    return ":" in name


def split_properties(properties: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    system: dict[str, Any] = {}
    user: dict[str, Any] = {}
    for name, value in properties.items():
        if is_user_property(name):
            user[name] = value
        else:
            system[name] = value
    return system, user


def get_system_properties(properties: dict[str, Any]) -> dict[str, Any]:
    return split_properties(properties)[0]


def get_user_properties(properties: dict[str, Any]) -> dict[str, Any]:
    return split_properties(properties)[1]


def stringify(value: Any) -> str:
    # zfs spells booleans in lowercase
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_key_value_list(properties: dict[str, Any]) -> list[dict[str, str]]:
    return [{"key": name, "value": stringify(value)} for name, value in properties.items()]
