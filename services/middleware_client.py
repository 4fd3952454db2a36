import logging
import requests
from typing import Any, Optional, Sequence
from config import settings
from services.errors import RemoteError


class MiddlewareClient:
    """REST client for the TrueNAS middleware core/call endpoint.

    Usage:
        mc = MiddlewareClient()
        mc.call("pool.dataset.query", [[["id", "=", "tank/vols"]], {}])
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[int] = None, verify: Optional[bool] = None,
                 session: Optional[requests.Session] = None):
        base_url = base_url or settings.TRUENAS_URL
        api_key = api_key or settings.TRUENAS_API_KEY
        # Fail fast if middleware config missing
        if not base_url or not api_key:
            raise RuntimeError("TrueNAS middleware not configured")
        # Use the URL exactly as provided; do not rewrite/force scheme
        self.base = base_url.rstrip("/")
        self.key = api_key
        self.timeout = timeout or settings.TRUENAS_TIMEOUT
        # Accept string or bool for the TLS flag
        v = settings.TRUENAS_VERIFY_TLS if verify is None else verify
        if isinstance(v, str):
            self.verify = not (v.lower() == "false")
        else:
            self.verify = bool(v)
        self.session = session or requests.Session()
        self._logger = logging.getLogger(__name__)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.key}"}

    @staticmethod
    def _error_from_response(r: requests.Response) -> RemoteError:
        try:
            body = r.json()
        except ValueError:
            body = r.text
        if isinstance(body, dict):
            code = body.get("errno", body.get("error"))
            message = body.get("message") or body.get("reason") or str(body.get("error") or body)
            return RemoteError(message, errno=code if isinstance(code, int) else None, extra=body)
        return RemoteError(f"middleware returned {r.status_code}: {body}")

    def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        url = f"{self.base}/api/v2.0/core/call"
        body = {"method": method, "params": list(params)}

        self._logger.debug("REST CALL -> %s %s", url, method)

        try:
            r = self.session.post(url, headers=self._headers(), json=body, timeout=self.timeout, verify=self.verify)
        except requests.RequestException as e:
            raise RemoteError(f"middleware request failed: {e}") from e

        if r.status_code < 200 or r.status_code >= 300:
            raise self._error_from_response(r)

        try:
            return r.json()
        except ValueError:
            return r.text

    def close(self):
        self.session.close()
