"""End-to-end tests of the HTTP API with a fake AI provider."""

import io
import json
import zipfile

import pytest
from fastapi.testclient import TestClient

from product_studio.api import app as app_module
from product_studio.editing.models import open_image
from product_studio.editing.session import SessionRegistry
from product_studio.errors import SafetyBlockedError
from product_studio.storage import ProductStore

from conftest import FakeProvider, make_png


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(tmp_path, provider):
    product_store = ProductStore(root_dir=tmp_path)
    registry = SessionRegistry()
    app = app_module.app
    app.dependency_overrides[app_module.get_store] = lambda: product_store
    app.dependency_overrides[app_module.get_sessions] = lambda: registry
    app.dependency_overrides[app_module.get_gemini] = lambda: provider
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _files(*images):
    return [("files", (f"img{i}.png", data, "image/png")) for i, data in enumerate(images)]


def _open_session(client, *images, product_id=""):
    resp = client.post("/sessions", data={"product_id": product_id}, files=_files(*images))
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestProducts:
    def test_create_list_and_get(self, client):
        created = client.post("/products", data={"name": "Mug", "product_info": "ceramic", "tone": "casual"}).json()
        assert created["tone"] == "casual"
        listed = client.get("/products").json()
        assert [p["product_id"] for p in listed] == [created["product_id"]]
        assert client.get(f"/products/{created['product_id']}").json()["name"] == "Mug"

    def test_missing_product(self, client):
        resp = client.get("/products/missing")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Product not found."

    def test_description_requires_saved_image(self, client):
        product = client.post("/products", data={"name": "Mug"}).json()
        resp = client.post(f"/products/{product['product_id']}/description/generate")
        assert resp.status_code == 400

    def test_missing_api_key(self, client, monkeypatch):
        app_module.app.dependency_overrides.pop(app_module.get_gemini)
        monkeypatch.setattr(app_module.settings, "gemini_api_key", None)
        session = _open_session(client, make_png())
        resp = client.post(f"/sessions/{session['session_id']}/generate", data={"prompt": "x"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "GEMINI_API_KEY is not set"


class TestEditorFlow:
    def test_edit_save_and_describe(self, client, provider):
        product = client.post("/products", data={"name": "Mug", "product_info": "ceramic mug"}).json()
        pid = product["product_id"]
        session = _open_session(client, make_png(), product_id=pid)
        sid = session["session_id"]
        assert len(session["images"]) == 1

        state = client.post(f"/sessions/{sid}/generate", data={"prompt": "make it blue"}).json()
        assert state["images"][0]["has_generated"] is True
        assert state["can_undo"] is True

        saved = client.post(f"/sessions/{sid}/save").json()
        assert len(saved["images"]) == 1
        assert client.get(f"/sessions/{sid}").status_code == 404

        asset = client.get(saved["images"][0]["url"])
        assert asset.status_code == 200
        assert open_image(asset.content).size == (1080, 810)

        desc = client.post(f"/products/{pid}/description/generate").json()
        assert desc["description"] == provider.description
        assert provider.description_calls[0]["product_info"] == "ceramic mug"

        enhanced = client.post(f"/products/{pid}/description/enhance").json()
        assert enhanced["description"].endswith("Now even better.")

        copied = client.get(f"/products/{pid}/description")
        assert copied.headers["content-type"].startswith("text/plain")
        assert copied.text == enhanced["description"]

    def test_reopen_product_loads_saved_images(self, client):
        pid = client.post("/products", data={"name": "Mug"}).json()["product_id"]
        sid = _open_session(client, make_png(), make_png((50, 50)), product_id=pid)["session_id"]
        client.post(f"/sessions/{sid}/save")

        reopened = client.post("/sessions", data={"product_id": pid}).json()
        assert len(reopened["images"]) == 2
        assert reopened["images"][1]["natural_width"] == 1080

    def test_save_without_product_returns_zip(self, client):
        sid = _open_session(client, make_png(), make_png((60, 60)))["session_id"]
        resp = client.post(f"/sessions/{sid}/save")
        assert resp.headers["content-type"] == "application/zip"
        names = zipfile.ZipFile(io.BytesIO(resp.content)).namelist()
        assert names == ["image-1.png", "image-2.png"]

    def test_crop_adjust_undo_redo(self, client):
        sid = _open_session(client, make_png())["session_id"]

        client.post(f"/sessions/{sid}/crop/aspect", data={"name": "square"})
        state = client.post(f"/sessions/{sid}/crop/confirm").json()
        assert state["images"][0]["crop"]["width"] == 50

        client.post(f"/sessions/{sid}/adjust/begin")
        client.put(f"/sessions/{sid}/adjust", data={"name": "brightness", "value": "140"})
        state = client.post(f"/sessions/{sid}/adjust/cancel").json()
        assert state["images"][0]["adjustments"]["brightness"] == 100

        state = client.post(f"/sessions/{sid}/undo").json()
        assert state["images"][0]["crop"]["width"] == 100
        assert state["can_redo"] is True
        state = client.post(f"/sessions/{sid}/redo").json()
        assert state["images"][0]["crop"]["width"] == 50

    def test_mask_strokes_and_preview(self, client):
        session = _open_session(client, make_png())
        sid = session["session_id"]
        iid = session["images"][0]["image_id"]

        resp = client.post(
            f"/sessions/{sid}/mask/strokes",
            data={"points": json.dumps([[10, 10], {"x": 40, "y": 40}]), "canvas_width": "100", "canvas_height": "50"},
        )
        assert resp.json()["drawn"] is True
        assert client.get(f"/sessions/{sid}/images/{iid}/mask").status_code == 200

        client.post(f"/sessions/{sid}/mask/clear")
        assert client.get(f"/sessions/{sid}/images/{iid}/mask").status_code == 404

        preview = client.get(f"/sessions/{sid}/images/{iid}/preview")
        assert preview.headers["content-type"] == "image/png"

    def test_bad_points_payload(self, client):
        sid = _open_session(client, make_png())["session_id"]
        resp = client.post(
            f"/sessions/{sid}/mask/strokes",
            data={"points": "nope", "canvas_width": "10", "canvas_height": "10"},
        )
        assert resp.status_code == 400

    @pytest.mark.parametrize("width,height", [("0", "50"), ("100000", "100000")])
    def test_bad_mask_canvas_size(self, client, width, height):
        sid = _open_session(client, make_png())["session_id"]
        resp = client.post(
            f"/sessions/{sid}/mask/strokes",
            data={"points": json.dumps([[1, 1]]), "canvas_width": width, "canvas_height": height},
        )
        assert resp.status_code == 400
        assert "mask canvas" in resp.json()["detail"]

    def test_enhance_preset_confirm(self, client, provider):
        sid = _open_session(client, make_png())["session_id"]
        state = client.post(f"/sessions/{sid}/enhance", data={"preset": "white_background"}).json()
        assert state["pending_enhancement"] is not None
        assert "white studio background" in provider.edit_calls[0]["prompt"]

        pending = client.get(f"/sessions/{sid}/enhance/pending")
        assert pending.content == provider.result

        state = client.post(f"/sessions/{sid}/enhance/confirm").json()
        assert state["pending_enhancement"] is None
        assert state["images"][0]["has_generated"] is True

    def test_unknown_preset(self, client):
        sid = _open_session(client, make_png())["session_id"]
        assert client.post(f"/sessions/{sid}/enhance", data={"preset": "sparkles"}).status_code == 400

    def test_safety_block_maps_to_502(self, client, provider):
        provider.error = SafetyBlockedError("Image generation was blocked for safety reasons.")
        sid = _open_session(client, make_png())["session_id"]

        resp = client.post(f"/sessions/{sid}/generate", data={"prompt": "x"})

        assert resp.status_code == 502
        assert resp.json()["detail"].startswith("Image generation was blocked")
        state = client.get(f"/sessions/{sid}").json()
        assert state["busy"] is False
        assert state["error"] == resp.json()["detail"]

    def test_unsupported_upload_type(self, client):
        resp = client.post("/sessions", files=[("files", ("notes.txt", b"hello", "text/plain"))])
        assert resp.status_code == 400

    def test_add_and_remove_images(self, client):
        session = _open_session(client, make_png())
        sid = session["session_id"]
        state = client.post(f"/sessions/{sid}/images", files=_files(make_png((30, 30)))).json()
        assert len(state["images"]) == 2

        second = state["images"][1]["image_id"]
        client.post(f"/sessions/{sid}/select/{second}")
        state = client.post(f"/sessions/{sid}/images/{second}/delete").json()
        assert len(state["images"]) == 1
        assert state["selected_id"] == session["images"][0]["image_id"]

    def test_unknown_session(self, client):
        assert client.get("/sessions/nope").status_code == 404


def test_presets(client):
    data = client.get("/presets").json()
    assert [a["name"] for a in data["aspect_ratios"]][:2] == ["square", "portrait"]
    assert "professional" in data["tones"]
