from typing import Tuple

from services.errors import MalformedNameError


def split_snapshot_name(name: str) -> Tuple[str, str]:
    """Split ``pool/path@label`` into ``("pool/path", "label")``.

    Anything other than exactly one ``@`` is rejected instead of truncated.
    """
    parts = str(name).split("@")
    if len(parts) != 2:
        raise MalformedNameError(name)
    return parts[0], parts[1]


def extract_dataset_name(name: str) -> str:
    return split_snapshot_name(name)[0]


def extract_snapshot_name(name: str) -> str:
    return split_snapshot_name(name)[1]


def join_snapshot_name(dataset: str, label: str) -> str:
    return f"{dataset}@{label}"


def normalize_zvol_path(zvol: str) -> str:
    """Map ``/dev/zvol/pool/vol``, ``pool/vol`` etc. to ``zvol/pool/vol``."""
    path = str(zvol)
    if path.startswith("/dev/"):
        path = path[len("/dev/"):]
    path = path.lstrip("/")
    if not path.startswith("zvol/"):
        path = "zvol/" + path
    return path
