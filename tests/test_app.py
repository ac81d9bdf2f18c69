from __future__ import annotations

import io

import pytest

import transform_core
from prompts import DEFAULT_PROMPT, PRESET_PROMPTS

from .fakes import image_part, model_response, png_bytes, text_part

TRANSFORM_URL = "/api/admin/transform-image"


@pytest.fixture
def products_dir(tmp_path):
    return tmp_path / "public" / "products"


@pytest.fixture
def model_calls(monkeypatch):
    """Replace the Gemini call; tests append replies to `replies`."""
    state = {"calls": [], "replies": []}

    def fake_call(api_key, prompt, image_bytes, mime_type, model=None):
        state["calls"].append({"prompt": prompt, "mime_type": mime_type, "size": len(image_bytes)})
        reply = state["replies"].pop(0) if state["replies"] else model_response(image_part(png_bytes()))
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(transform_core, "call_model", fake_call)
    return state


@pytest.fixture
def client(monkeypatch, products_dir, model_calls):
    from app import app

    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setitem(app.config, "PRODUCTS_DIR", str(products_dir))
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def _post(client, content=b"img", mime="image/png", prompt=None, filename="photo.png"):
    data = {"image": (io.BytesIO(content), filename, mime)}
    if prompt is not None:
        data["prompt"] = prompt
    return client.post(TRANSFORM_URL, data=data, content_type="multipart/form-data")


# ── Validation order ─────────────────────────────────────────────────────────

def test_missing_api_key_is_503(client, monkeypatch, model_calls):
    monkeypatch.delenv("GEMINI_API_KEY")
    resp = client.post(TRANSFORM_URL, data={}, content_type="multipart/form-data")
    assert resp.status_code == 503
    assert resp.get_json()["code"] == "missing_api_key"
    assert model_calls["calls"] == []


def test_missing_image_is_400(client):
    resp = client.post(TRANSFORM_URL, data={"prompt": "x"}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "missing_image"


def test_text_plain_rejected_before_model_call(client, model_calls):
    resp = _post(client, b"hello", mime="text/plain", filename="notes.txt")
    body = resp.get_json()
    assert resp.status_code == 400
    assert body["code"] == "unsupported_type"
    assert "error" in body
    assert model_calls["calls"] == []


def test_exact_size_ceiling_accepted(client, model_calls):
    resp = _post(client, b"\0" * transform_core.MAX_FILE_SIZE)
    assert resp.status_code == 200
    assert model_calls["calls"][0]["size"] == transform_core.MAX_FILE_SIZE


def test_one_byte_over_ceiling_rejected(client, model_calls):
    resp = _post(client, b"\0" * (transform_core.MAX_FILE_SIZE + 1))
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "file_too_large"
    assert model_calls["calls"] == []


def test_body_over_request_limit_is_json_400(client):
    resp = _post(client, b"\0" * (transform_core.MAX_FILE_SIZE + 2 * 1024 * 1024))
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "file_too_large"


# ── Upstream anomalies ───────────────────────────────────────────────────────

def test_empty_candidates_and_missing_image_part_are_distinct(client, model_calls):
    from types import SimpleNamespace

    model_calls["replies"] = [
        SimpleNamespace(candidates=[]),
        model_response(text_part("I described the image instead")),
    ]
    first = _post(client)
    second = _post(client)

    assert first.status_code == second.status_code == 502
    assert first.get_json()["code"] == "no_candidates"
    assert second.get_json()["code"] == "no_image_part"


def test_undecodable_inline_data_is_502(client, model_calls, products_dir):
    model_calls["replies"] = [model_response(image_part("abc", "image/png"))]
    resp = _post(client)
    assert resp.status_code == 502
    assert resp.get_json()["code"] == "undecodable_image"
    assert not products_dir.exists()


def test_model_request_failure_is_502(client, model_calls):
    model_calls["replies"] = [
        transform_core.UpstreamError(
            "Image model request failed", code="model_request_failed", details="quota exceeded"
        )
    ]
    resp = _post(client)
    body = resp.get_json()
    assert resp.status_code == 502
    assert body["details"] == "quota exceeded"


def test_unexpected_error_is_500_with_details(client, model_calls):
    model_calls["replies"] = [RuntimeError("boom")]
    resp = _post(client)
    body = resp.get_json()
    assert resp.status_code == 500
    assert body["error"] == "Failed to transform image"
    assert body["details"] == "boom"


def test_storage_failure_is_500(client, products_dir):
    products_dir.parent.mkdir(parents=True)
    products_dir.write_text("not a directory")
    resp = _post(client)
    assert resp.status_code == 500
    assert resp.get_json()["code"] == "storage_failed"


# ── Success ──────────────────────────────────────────────────────────────────

def test_round_trip_stores_and_serves_image(client, model_calls, products_dir):
    generated = png_bytes((0, 128, 0))
    model_calls["replies"] = [model_response(text_part("Done."), image_part(generated))]

    resp = _post(client, b"jpeg-bytes", mime="image/jpeg", prompt="Studio look")
    body = resp.get_json()

    assert resp.status_code == 200
    assert body["success"] is True
    assert body["appliedPrompt"] == "Studio look"
    assert body["path"] == f"/products/{body['filename']}"
    assert (products_dir / body["filename"]).read_bytes() == generated
    assert model_calls["calls"][0]["mime_type"] == "image/jpeg"

    served = client.get(body["path"])
    assert served.status_code == 200
    assert served.data == generated


@pytest.mark.parametrize("prompt", [None, "", "   "])
def test_default_prompt_applied_and_echoed(client, model_calls, prompt):
    resp = _post(client, prompt=prompt)
    assert resp.get_json()["appliedPrompt"] == DEFAULT_PROMPT
    assert model_calls["calls"][0]["prompt"] == DEFAULT_PROMPT


def test_custom_prompt_echoed_verbatim(client, model_calls):
    prompt = "  Pure white background, keep the label.  "
    resp = _post(client, prompt=prompt)
    assert resp.get_json()["appliedPrompt"] == prompt
    assert model_calls["calls"][0]["prompt"] == prompt


def test_repeated_transforms_get_distinct_files(client, products_dir):
    first = _post(client, prompt="p").get_json()
    second = _post(client, prompt="p").get_json()
    assert first["filename"] != second["filename"]
    assert len(list(products_dir.iterdir())) == 2


def test_presets_endpoint(client):
    body = client.get("/api/admin/transform-presets").get_json()
    assert body["default"] == DEFAULT_PROMPT
    assert [p["label"] for p in body["presets"]] == [p["label"] for p in PRESET_PROMPTS]
