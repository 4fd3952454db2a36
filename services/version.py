import logging
import re
from typing import Any, Callable, Optional

from packaging import version

logger = logging.getLogger(__name__)

SYSTEM_VERSION_CACHE_KEY = "truenas:system_version"

_NUMERIC = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def coerce_version(raw: Optional[str]) -> Optional[version.Version]:
    """Pull the first ``N[.N[.N]]`` group out of e.g. ``TrueNAS-SCALE-25.04.2``."""
    if not raw:
        return None
    m = _NUMERIC.search(str(raw))
    if not m:
        return None
    parts = [p if p is not None else "0" for p in m.groups()]
    return version.Version(".".join(parts))


class VersionGate:
    def __init__(self, call: Callable[..., Any], cache: Any, ttl: int = 60) -> None:
        self._call = call
        self._cache = cache
        self._ttl = ttl

    def get_system_version(self) -> str:
        cached = self._cache.get(SYSTEM_VERSION_CACHE_KEY)
        if cached:
            return cached

        reported = self._call("system.version", [])
        logger.debug("appliance reports version %s", reported)
        self._cache.set(SYSTEM_VERSION_CACHE_KEY, reported, self._ttl)
        return reported

    def get_system_version_semver(self) -> Optional[version.Version]:
        return coerce_version(self.get_system_version())

    def get_is_scale(self) -> bool:
        raw = self.get_system_version() or ""
        if "scale" in raw.lower():
            return True
        parsed = coerce_version(raw)
        return parsed is not None and parsed >= version.Version("20.0.0")

    def supports(self, minimum: str) -> bool:
        parsed = self.get_system_version_semver()
        return parsed is not None and parsed >= version.Version(minimum)

    def get_system_info(self) -> dict[str, Any]:
        return self._call("system.info", [])
