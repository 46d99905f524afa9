import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

import figma2mjml.auth as auth
import figma2mjml.main as main_mod
import figma2mjml.ratelimit as ratelimit
from figma2mjml.figma import FigmaError
from figma2mjml.main import app
from figma2mjml.orchestrator import FallbackOrchestrator

client = TestClient(app)

VALID_MJML = "<mjml><mj-body><mj-section><mj-column><mj-text>Hi</mj-text></mj-column></mj-section></mj-body></mjml>"

FIGMA_FILE = {
    "name": "Launch",
    "lastModified": "2024-01-01T00:00:00Z",
    "document": {
        "children": [
            {
                "name": "Page 1",
                "children": [
                    {
                        "type": "FRAME",
                        "name": "Email",
                        "absoluteBoundingBox": {"x": 0, "y": 0, "width": 600, "height": 900},
                        "children": [
                            {
                                "type": "TEXT",
                                "characters": "Launch day",
                                "absoluteBoundingBox": {"x": 0, "y": 10, "width": 300, "height": 40},
                            }
                        ],
                    }
                ],
            }
        ]
    },
}


class FakeFigmaClient:
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error

    def fetch_file(self, file_id):
        if self.error is not None:
            raise self.error
        return self.data


@pytest.fixture(autouse=True)
def _offline(monkeypatch):
    ratelimit._reset()
    monkeypatch.setattr(auth, "API_KEYS", set())
    monkeypatch.setattr(main_mod, "build_orchestrator", lambda: FallbackOrchestrator({}))
    monkeypatch.setattr(main_mod.settings, "figma_token", "figd_test")
    yield
    ratelimit._reset()


def _png(size=(300, 150)):
    buf = io.BytesIO()
    Image.new("RGB", size, (0, 120, 255)).save(buf, "PNG")
    return buf.getvalue()


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["features"]["templateFallback"] is True
    assert "X-Request-ID" in r.headers


def test_providers_listing():
    r = client.get("/providers")
    assert r.status_code == 200
    keys = [p["key"] for p in r.json()]
    assert keys == ["openai", "groq", "cohere", "gemini"]


def test_convert_figma_requires_file_id():
    r = client.post("/convert-figma", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "Missing fileId parameter"


def test_convert_figma_requires_token(monkeypatch):
    monkeypatch.setattr(main_mod.settings, "figma_token", None)
    r = client.post("/convert-figma", json={"fileId": "abc"})
    assert r.status_code == 500
    assert "token" in r.json()["error"]


@pytest.mark.parametrize("upstream, expected", [(401, 403), (403, 403), (404, 404), (500, 502)])
def test_convert_figma_maps_upstream_errors(monkeypatch, upstream, expected):
    error = FigmaError(f"Figma API error: {upstream}", status_code=upstream)
    monkeypatch.setattr(main_mod, "build_figma_client", lambda: FakeFigmaClient(error=error))
    r = client.post("/convert-figma", json={"fileId": "abc"})
    assert r.status_code == expected
    assert r.json()["success"] is False


def test_convert_figma_success(monkeypatch):
    monkeypatch.setattr(main_mod, "build_figma_client", lambda: FakeFigmaClient(data=FIGMA_FILE))
    r = client.post("/convert-figma", json={"fileId": "abc", "options": {"providers": ["openai"]}})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["usedFallback"] is True
    assert body["providerUsed"] == "synthesized"
    assert "Launch day" in body["html"]
    assert body["mjml"].lstrip().startswith("<mjml>")
    meta = body["metadata"]
    assert meta["fileName"] == "Launch"
    assert meta["primaryFrame"] == {"name": "Email", "width": 600, "height": 900}
    assert meta["aiUsed"] is False
    assert meta["attemptErrors"] == [{"provider": "openai", "errorMessage": "Unknown provider: openai"}]


def test_convert_figma_without_suitable_frames(monkeypatch):
    wide = {
        "name": "Desktop",
        "document": {
            "children": [
                {
                    "name": "P",
                    "children": [
                        {
                            "type": "FRAME",
                            "name": "Landing",
                            "absoluteBoundingBox": {"x": 0, "y": 0, "width": 1440, "height": 900},
                            "children": [{"type": "TEXT", "characters": "x"}],
                        }
                    ],
                }
            ]
        },
    }
    monkeypatch.setattr(main_mod, "build_figma_client", lambda: FakeFigmaClient(data=wide))
    r = client.post("/convert-figma", json={"fileId": "abc"})
    assert r.status_code == 400
    assert r.json()["metadata"]["availableFrames"] == [{"name": "Landing", "size": "1440x900"}]


def test_convert_figma_without_frames(monkeypatch):
    monkeypatch.setattr(main_mod, "build_figma_client", lambda: FakeFigmaClient(data={"name": "Empty", "document": {}}))
    r = client.post("/convert-figma", json={"fileId": "abc"})
    assert r.status_code == 400
    assert r.json()["error"] == "No suitable layouts found in Figma file"


def test_convert_image_success():
    r = client.post("/convert-image", files={"image": ("hero.png", _png(), "image/png")})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["usedFallback"] is True
    assert body["metadata"]["format"] == "png"
    assert body["metadata"]["dimensions"] == {"width": 300, "height": 150}
    assert "<img" in body["html"]


def test_convert_image_requires_file():
    r = client.post("/convert-image", files={"attachment": ("hero.png", _png(), "image/png")})
    assert r.status_code == 400


def test_convert_image_rejects_unknown_format():
    r = client.post("/convert-image", files={"image": ("notes.txt", b"plain text", "text/plain")})
    assert r.status_code == 415
    assert r.json()["error"] == "Image validation failed"


def test_convert_image_rejects_oversize(monkeypatch):
    monkeypatch.setattr(main_mod.settings, "max_upload_bytes", 16)
    r = client.post("/convert-image", files={"image": ("hero.png", _png(), "image/png")})
    assert r.status_code == 413


def test_validate_endpoint():
    src = VALID_MJML.replace("<mj-section>", '<mj-section padding="20px 10px">')
    r = client.post("/validate", json={"mjml": src})
    assert r.status_code == 200
    body = r.json()
    assert body["isValid"] is True
    assert 'padding-top="20px"' in body["correctedDocument"]
    assert body["warnings"][0]["kind"] == "padding-format"


def test_compile_endpoint():
    r = client.post("/compile", json={"mjml": VALID_MJML})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert "Hi" in r.json()["html"]

    r = client.post("/compile", json={"mjml": VALID_MJML, "validationLevel": "loose"})
    assert r.status_code == 400

    r = client.post("/compile", json={"mjml": "nope"})
    assert r.status_code == 422
    assert r.json()["success"] is False


def test_api_key_required_when_configured(monkeypatch):
    monkeypatch.setattr(auth, "API_KEYS", {"k1"})
    r = client.post("/convert-figma", json={"fileId": "abc"})
    assert r.status_code == 401

    monkeypatch.setattr(main_mod, "build_figma_client", lambda: FakeFigmaClient(data=FIGMA_FILE))
    r = client.post("/convert-figma", json={"fileId": "abc"}, headers={"x-api-key": "k1"})
    assert r.status_code == 200


def test_rate_limit(monkeypatch):
    monkeypatch.setattr(ratelimit, "MAX_REQUESTS", 1)
    first = client.post("/convert-figma", json={})
    assert first.status_code == 400
    second = client.post("/convert-figma", json={})
    assert second.status_code == 429
    assert "Retry-After" in second.headers
