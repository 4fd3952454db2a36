"""HTTP surface tests using the Flask test client."""
import bcrypt
import pytest

import app as app_module
import config
import services.service_factory as service_factory
from config import Settings
from services.errors import RemoteError
from services.storage_service import StorageService
from tests.fakes import FakeAppliance, FakeClock

ADMIN_TOKEN = "s3cret-operator-token"
ADMIN_HASH = bcrypt.hashpw(ADMIN_TOKEN.encode(), bcrypt.gensalt(rounds=4)).decode()


def configured(**overrides):
    values = dict(
        TRUENAS_URL="https://nas.local",
        TRUENAS_API_KEY="1-abc",
        TRUENAS_TRANSPORT="rest",
        AUDIT_PARENT_DATASET="tank/k8s",
        ADMIN_PASSWORD_HASH=ADMIN_HASH,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def appliance():
    return FakeAppliance()


@pytest.fixture
def use_settings(monkeypatch):
    def _use(s):
        for module in (config, app_module, service_factory):
            monkeypatch.setattr(module, "settings", s)
        return s

    _use(configured())
    return _use


@pytest.fixture
def client(use_settings, appliance, monkeypatch):
    monkeypatch.setattr(app_module, "make_client", lambda: appliance)
    with app_module.app.app_context():
        app_module.cache.clear()
    app_module.app.config["TESTING"] = True
    return app_module.app.test_client()


class TestHealth:

    def test_ok(self, client, appliance):
        appliance.on("system.version", "TrueNAS-SCALE-25.04.0")
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True, "truenas": "ok"}
        assert appliance.closed

    def test_appliance_down(self, client, appliance):
        appliance.on("system.version", RemoteError("connection refused"))
        resp = client.get("/health")
        assert resp.status_code == 503
        assert resp.get_json()["truenas"] == "error"

    def test_unconfigured(self, client, use_settings):
        use_settings(configured(TRUENAS_URL=None))
        resp = client.get("/health")
        assert resp.status_code == 503
        assert "not configured" in resp.get_json()["error"]


class TestVersion:

    def test_version_and_capabilities(self, client, appliance):
        appliance.on("system.version", "TrueNAS-SCALE-25.04.1")

        data = client.get("/version").get_json()

        assert data["version"] == "TrueNAS-SCALE-25.04.1"
        assert data["is_scale"] is True
        assert data["capabilities"]["nvmet"] is True

    def test_version_cached_between_requests(self, client, appliance):
        appliance.on("system.version", "TrueNAS-SCALE-24.10.0")
        client.get("/version")
        client.get("/version")
        assert len(appliance.calls_to("system.version")) == 1


class TestDatasets:

    def test_properties_normalized(self, client, appliance):
        appliance.on("pool.dataset.query", [{
            "id": "tank/a",
            "used": {"value": "1G", "rawvalue": "1073741824", "source": "NONE"},
            "user_properties": {},
        }])

        resp = client.get("/datasets/tank/a?props=used,csi:owner")

        assert resp.status_code == 200
        props = resp.get_json()["properties"]
        assert props["used"]["rawvalue"] == "1073741824"
        assert props["csi:owner"] == {"value": "-", "rawvalue": "-", "source": "-"}
        assert appliance.calls_to("pool.dataset.query") == [[[["id", "=", "tank/a"]], {}]]

    def test_missing_dataset(self, client, appliance):
        appliance.on("pool.dataset.query", [])
        resp = client.get("/datasets/tank/missing")
        assert resp.status_code == 404
        assert resp.get_json()["type"] == "ResourceNotFoundError"

    def test_appliance_error(self, client, appliance):
        appliance.on("pool.dataset.query", RemoteError("middleware is restarting"))
        resp = client.get("/datasets/tank/a")
        assert resp.status_code == 502
        assert resp.get_json()["error"] == "middleware is restarting"


class TestSnapshots:

    def test_malformed_name(self, client, appliance):
        resp = client.get("/snapshots/tank/a")
        assert resp.status_code == 400
        assert appliance.calls == []

    def test_snapshot(self, client, appliance):
        appliance.on("zfs.snapshot.query", [{"id": "tank/a@s1", "properties": {"used": {"value": "0", "rawvalue": "0", "source": "NONE"}}}])
        resp = client.get("/snapshots/tank/a@s1?props=used")
        assert resp.get_json()["properties"]["used"]["value"] == "0"


class TestJobs:

    def test_get_job(self, client, appliance):
        appliance.on("core.get_jobs", [{"id": 7, "state": "RUNNING", "progress": {"percent": 40}}])
        data = client.get("/api/jobs/7").get_json()
        assert data["job"]["state"] == "RUNNING"
        assert data["job"]["progress"] == {"percent": 40}

    def test_get_missing_job(self, client, appliance):
        appliance.on("core.get_jobs", [])
        assert client.get("/api/jobs/7").status_code == 404

    def test_wait_success(self, client, appliance):
        appliance.on("core.get_jobs", [{"id": 7, "state": "SUCCESS", "result": True}])
        data = client.post("/api/jobs/7/wait").get_json()
        assert data["job"]["result"] is True

    def test_wait_failed(self, client, appliance):
        appliance.on("core.get_jobs", [{"id": 7, "state": "FAILED", "error": "disk full"}])
        resp = client.post("/api/jobs/7/wait")
        assert resp.status_code == 502
        assert "disk full" in resp.get_json()["error"]

    def test_wait_timeout(self, client, appliance, monkeypatch):
        fake_clock = FakeClock()
        monkeypatch.setattr(
            app_module, "get_service",
            lambda c, cache=None: StorageService(c, sleep=fake_clock.sleep, clock=fake_clock),
        )
        appliance.on("core.get_jobs", [{"id": 7, "state": "RUNNING"}])

        resp = client.post("/api/jobs/7/wait?timeout=5")

        assert resp.status_code == 504
        assert resp.get_json()["type"] == "JobTimeoutError"


class TestAudit:

    @pytest.fixture(autouse=True)
    def _inventory(self, appliance):
        appliance.on("iscsi.target.query", [{"id": 1, "name": "pvc-a"}, {"id": 2, "name": "pvc-gone"}])
        appliance.on("iscsi.extent.query", [{"id": 10, "name": "pvc-a", "type": "DISK", "disk": "zvol/tank/k8s/pvc-a"}])
        appliance.on("iscsi.targetextent.query", [{"id": 100, "target": 1, "extent": 10}])
        appliance.on("iscsi.global.sessions", [])
        appliance.on("pool.dataset.query", lambda params: [{"id": "tank/k8s/pvc-a"}] if params[0][0][2] == "tank/k8s/pvc-a" else [])
        appliance.on("iscsi.target.delete", True)

    def test_audit(self, client):
        data = client.get("/audit/iscsi").get_json()
        assert data["parent"] == "tank/k8s"
        assert [t["name"] for t in data["audit"]["orphaned_targets_without_dataset"]] == ["pvc-gone"]

    def test_audit_requires_parent(self, client, use_settings):
        use_settings(configured(AUDIT_PARENT_DATASET=None))
        assert client.get("/audit/iscsi").status_code == 400

    def test_cleanup_requires_admin(self, client, appliance):
        assert client.post("/audit/iscsi/cleanup").status_code == 403
        resp = client.post("/audit/iscsi/cleanup", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 403
        assert appliance.calls == []

    def test_cleanup_dry_run(self, client, appliance):
        resp = client.post("/audit/iscsi/cleanup", headers={"Authorization": f"Bearer {ADMIN_TOKEN}"})
        data = resp.get_json()
        assert data["dry_run"] is True
        assert data["deleted"] == 1
        assert appliance.calls_to("iscsi.target.delete") == []

    def test_cleanup(self, client, appliance):
        resp = client.post(
            "/audit/iscsi/cleanup?dry_run=false", headers={"Authorization": f"Bearer {ADMIN_TOKEN}"},
        )
        assert resp.get_json()["targets"] == [{"id": 2, "name": "pvc-gone"}]
        assert appliance.calls_to("iscsi.target.delete") == [[2, True]]
