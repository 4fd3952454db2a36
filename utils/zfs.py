import json
import logging
import ssl
import threading
from typing import Any, Optional, Sequence

import websocket

from config import settings, is_configured
from services.errors import RemoteError

logger = logging.getLogger(__name__)


def _remote_error(error: Any) -> RemoteError:
    # middleware error objects: {"error": errno, "reason": str, "type": ..., "extra": ...}
    if isinstance(error, dict):
        code = error.get("error")
        reason = error.get("reason") or error.get("message") or str(error)
        return RemoteError(reason, errno=code if isinstance(code, int) else None, extra=error.get("extra"))
    return RemoteError(str(error))


class TrueNASMiddlewareClient:
    """Websocket session against the middleware.

    One request is in flight at a time; ``call`` holds a lock around the
    send/receive pair so a single session can be shared between threads.
    """

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None,
                 verify_tls: Optional[bool] = None, timeout: Optional[int] = None):
        # Resolved in connect() so that building a client never raises on
        # missing configuration.
        self.url = url
        self.api_key = api_key
        self.verify_tls = settings.TRUENAS_VERIFY_TLS if verify_tls is None else verify_tls
        self.timeout = timeout or settings.TRUENAS_TIMEOUT
        self.ws = None
        self._id = 0
        self._lock = threading.Lock()

    def _next_id(self):
        self._id += 1
        return str(self._id)

    def connect(self):
        try:
            if self.url is None or self.api_key is None:
                if not is_configured():
                    raise RemoteError("TrueNAS middleware not configured")
                self.url = self.url or settings.TRUENAS_WS_URL
                self.api_key = self.api_key or settings.TRUENAS_API_KEY

            sslopt = None
            if not self.verify_tls:
                sslopt = {"cert_reqs": ssl.CERT_NONE}

            self.ws = websocket.create_connection(
                self.url,
                timeout=self.timeout,
                sslopt=sslopt,
            )

            self.ws.send(json.dumps({
                "msg": "connect",
                "version": "1",
                "support": ["1"],
            }))

            handshake = json.loads(self.ws.recv())
            if handshake.get("msg") != "connected":
                raise RemoteError(f"Middleware handshake failed: {handshake}")

            result = self._request("auth.login_with_api_key", [self.api_key])
            if result is not True:
                raise RemoteError("TrueNAS auth rejected")

            logger.debug("connected to %s", self.url)
        except RemoteError:
            self.close()
            raise
        except Exception as e:
            self.close()
            raise RemoteError(f"middleware connection failed: {e}") from e

    def _request(self, method: str, params: Sequence[Any]) -> Any:
        req_id = self._next_id()
        self.ws.send(json.dumps({
            "id": req_id,
            "msg": "method",
            "method": method,
            "params": list(params),
        }))
        while True:
            resp = json.loads(self.ws.recv())
            # collection events and pings may interleave with results
            if resp.get("msg") != "result" or resp.get("id") != req_id:
                continue
            if resp.get("error"):
                raise _remote_error(resp["error"])
            return resp.get("result")

    def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        if self.ws is None:
            raise RemoteError("middleware client is not connected")
        with self._lock:
            try:
                return self._request(method, params)
            except RemoteError:
                raise
            except Exception as e:
                raise RemoteError(f"middleware call {method} failed: {e}") from e

    def close(self):
        if self.ws:
            try:
                self.ws.close()
            except Exception:
                logger.debug("error closing middleware websocket", exc_info=True)
            finally:
                self.ws = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc_info):
        self.close()
