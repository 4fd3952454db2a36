from functools import wraps
from flask import Flask, request, jsonify, g
from flask_caching import Cache

from config import settings, configure_logging
from services.audit import TargetInfo, audit_iscsi, cleanup_orphaned_targets
from services.errors import (
    ApplianceError,
    JobNotFoundError,
    JobTimeoutError,
    MalformedNameError,
    ResourceNotFoundError,
)
from services.service_factory import get_service, make_client

configure_logging()

# ---- CRITICAL: Gunicorn expects module-level variable named "app" ----
app = Flask(__name__)

# Log presence (not values) of TrueNAS configuration for startup debugging
app.logger.info(
    "Config status: URL=%s API_KEY=%s TRANSPORT=%s VERIFY_TLS=%s",
    bool(settings.TRUENAS_URL),
    bool(settings.TRUENAS_API_KEY),
    settings.TRUENAS_TRANSPORT,
    bool(settings.TRUENAS_VERIFY_TLS),
)

# Explicit export for WSGI loaders
__all__ = ["app"]

app.config["CACHE_TYPE"] = "SimpleCache"
app.config["CACHE_DEFAULT_TIMEOUT"] = settings.TRUENAS_VERSION_CACHE_TTL
# shared across requests so the appliance version is fetched once per ttl
cache = Cache(app)

DEFAULT_PROPERTIES = ["name", "type", "used", "available", "mountpoint"]


def require_truenas(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        # Avoid importing at module import time to prevent side effects
        from config import is_configured

        if not is_configured():
            return jsonify({"ok": False, "error": "TrueNAS middleware not configured"}), 503
        return fn(*args, **kwargs)

    return wrapper


def require_admin(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        import bcrypt

        header = request.headers.get("Authorization", "")
        token = header[len("Bearer "):] if header.startswith("Bearer ") else ""
        if not settings.ADMIN_PASSWORD_HASH or not token:
            return jsonify({"ok": False, "error": "Forbidden"}), 403
        try:
            ok = bcrypt.checkpw(token.encode(), settings.ADMIN_PASSWORD_HASH.encode())
        except ValueError:
            app.logger.warning("ADMIN_PASSWORD_HASH is not a valid bcrypt hash")
            ok = False
        if not ok:
            return jsonify({"ok": False, "error": "Forbidden"}), 403
        return fn(*args, **kwargs)

    return wrapper


def with_storage_service(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        client = make_client()
        try:
            if hasattr(client, "connect"):
                client.connect()
            g.storage = get_service(client, cache=cache)
            return fn(*args, **kwargs)
        finally:
            try:
                client.close()
            finally:
                g.pop("storage", None)

    return wrapper


def _props_arg() -> list[str]:
    raw = request.args.get("props")
    if not raw:
        return list(DEFAULT_PROPERTIES)
    return [p.strip() for p in raw.split(",") if p.strip()]


def _error(e: Exception, status: int):
    return jsonify({"ok": False, "error": str(e), "type": type(e).__name__}), status


@app.errorhandler(ResourceNotFoundError)
@app.errorhandler(JobNotFoundError)
def handle_not_found(e):
    return _error(e, 404)


@app.errorhandler(MalformedNameError)
def handle_malformed_name(e):
    return _error(e, 400)


@app.errorhandler(JobTimeoutError)
def handle_job_timeout(e):
    return _error(e, 504)


@app.errorhandler(ApplianceError)
def handle_appliance_error(e):
    app.logger.error("appliance error: %s", e)
    return _error(e, 502)


@app.route("/health")
@require_truenas
@with_storage_service
def health():
    """Cheap health probe for reverse proxies and quick debugging."""
    try:
        g.storage.call("system.version")
        return {"ok": True, "truenas": "ok"}
    except Exception as e:
        return {"ok": False, "truenas": "error", "error": str(e)}, 503


@app.route("/version")
@require_truenas
@with_storage_service
def version_view():
    storage = g.storage
    return jsonify({
        "ok": True,
        "version": storage.get_system_version(),
        "is_scale": storage.get_is_scale(),
        "capabilities": storage.capabilities(),
    })


@app.route("/datasets/<path:name>")
@require_truenas
@with_storage_service
def dataset_view(name):
    return jsonify({"ok": True, "name": name, "properties": g.storage.dataset_get(name, _props_arg())})


@app.route("/snapshots/<path:name>")
@require_truenas
@with_storage_service
def snapshot_view(name):
    return jsonify({"ok": True, "name": name, "properties": g.storage.snapshot_get(name, _props_arg())})


def _job_info(job: dict) -> dict:
    return {
        "id": job.get("id"),
        "state": job.get("state"),
        "progress": job.get("progress"),
        "error": job.get("error"),
        "result": job.get("result"),
    }


@app.route("/api/jobs/<int:job_id>")
@require_truenas
@with_storage_service
def api_get_job(job_id: int):
    jobs = g.storage.core_get_jobs([["id", "=", job_id]])
    if not jobs:
        return jsonify({"ok": False, "error": "job not found"}), 404
    return jsonify({"ok": True, "job": _job_info(jobs[0])})


@app.route("/api/jobs/<int:job_id>/wait", methods=["POST"])
@require_truenas
@with_storage_service
def api_wait_job(job_id: int):
    timeout = request.args.get("timeout", default=settings.TRUENAS_FS_JOB_TIMEOUT, type=int)
    job = g.storage.core_wait_for_job(job_id, timeout=timeout)
    return jsonify({"ok": True, "job": _job_info(job)})


def _parent_arg() -> str | None:
    return request.args.get("parent") or settings.AUDIT_PARENT_DATASET


@app.route("/audit/iscsi")
@require_truenas
@with_storage_service
def audit_view():
    parent = _parent_arg()
    if not parent:
        return jsonify({"ok": False, "error": "parent dataset required"}), 400
    result = audit_iscsi(g.storage, parent)
    return jsonify({"ok": True, "parent": parent, "audit": result.to_dict()})


@app.route("/audit/iscsi/cleanup", methods=["POST"])
@require_truenas
@require_admin
@with_storage_service
def audit_cleanup():
    parent = _parent_arg()
    if not parent:
        return jsonify({"ok": False, "error": "parent dataset required"}), 400
    dry_run = request.args.get("dry_run", "true").lower() != "false"

    result = audit_iscsi(g.storage, parent)
    targets: list[TargetInfo] = result.orphaned_targets_without_dataset
    deleted = cleanup_orphaned_targets(g.storage, targets, dry_run=dry_run)
    app.logger.info("iscsi cleanup parent=%s dry_run=%s deleted=%d", parent, dry_run, deleted)
    return jsonify({
        "ok": True,
        "dry_run": dry_run,
        "deleted": deleted,
        "targets": [{"id": t.id, "name": t.name} for t in targets],
    })
