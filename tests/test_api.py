# tests/test_api.py
from typing import cast

import pytest

from config import config as app_config
from geoguess import create_app
from geoguess.services import get_runtime
from geoguess.services.geocoding import GeocodeResolver
from geoguess.services.image_service import IMAGES, PANORAMAS, ImageService
from geoguess.services.mapillary_client import ImageLocator
from tests.fakes import FakeLocator, FakeResolver, counting_images


def _make_app(tmp_path, **overrides):
    attrs = {"MAPILLARY_ACCESS_TOKEN": None, "LOG_DIR": tmp_path / "logs"}
    attrs.update(overrides)
    config_class = type("_IsolatedConfig", (app_config.TestConfig,), attrs)
    return create_app(config_class)


@pytest.fixture
def app(tmp_path):
    app = _make_app(tmp_path)
    yield app
    get_runtime(app).close()


@pytest.fixture
def client(app):
    return app.test_client()


def _install(app, name, locator, resolver):
    runtime = get_runtime(app)
    settings = runtime.services[name].settings
    runtime.services[name] = ImageService(settings, cast(ImageLocator, locator), cast(GeocodeResolver, resolver))


@pytest.mark.parametrize("path", ["/api/game/image", "/api/game/pano"])
def test_missing_token_maps_to_500(client, path):
    resp = client.get(path)

    assert resp.status_code == 500
    assert resp.get_json()["error"] == "missing_credential"


def test_nothing_found_maps_to_503(app, client):
    _install(app, IMAGES, FakeLocator([None]), FakeResolver())

    resp = client.get("/api/game/image")

    assert resp.status_code == 503
    assert resp.get_json()["error"] == "image_unavailable"


def test_image_endpoint_returns_entry_payload(app, client):
    _install(app, IMAGES, FakeLocator([counting_images(48.8566, 2.3522)]), FakeResolver(["FR"]))

    resp = client.get("/api/game/image")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["countryCode"] == "FR"
    assert body["countryName"] == "France"
    assert body["coordinates"] == {"lat": 48.8566, "lon": 2.3522}
    assert body["imageUrl"].startswith("https://img.example/")
    assert body["contributor"] == "alice"


def test_pano_endpoint_uses_the_panorama_service(app, client):
    _install(app, IMAGES, FakeLocator([counting_images()]), FakeResolver(["FR"]))
    _install(app, PANORAMAS, FakeLocator([counting_images(35.68, 139.69)]), FakeResolver(["JP"]))

    resp = client.get("/api/game/pano")

    assert resp.status_code == 200
    assert resp.get_json()["countryCode"] == "JP"


def test_health_reports_both_caches(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok"
    assert set(body["caches"]) == {IMAGES, PANORAMAS}
    assert body["caches"][IMAGES]["size"] == 0
    assert body["caches"][PANORAMAS]["refillInFlight"] is False


def test_startup_prefill_without_token_leaves_caches_empty(tmp_path):
    app = _make_app(tmp_path, CACHE_PREFILL_ON_STARTUP=True)
    try:
        runtime = get_runtime(app)
        assert all(service.cache.size() == 0 for service in runtime.services.values())
        assert runtime.loop.is_running
    finally:
        get_runtime(app).close()

    assert not get_runtime(app).loop.is_running


class _FakeAtexit:
    def __init__(self):
        self.hooks = []

    def register(self, func):
        self.hooks.append(func)

    def unregister(self, func):
        self.hooks = [hook for hook in self.hooks if hook != func]


def test_closed_runtimes_leave_no_exit_hooks(tmp_path, monkeypatch):
    import geoguess.services as services_module

    fake_atexit = _FakeAtexit()
    monkeypatch.setattr(services_module, "atexit", fake_atexit)

    first = _make_app(tmp_path)
    second = _make_app(tmp_path)
    assert len(fake_atexit.hooks) == 2

    get_runtime(first).close()
    assert fake_atexit.hooks == [get_runtime(second).close]

    get_runtime(second).close()
    assert fake_atexit.hooks == []
