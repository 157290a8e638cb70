import pytest

from dreamy_api.config import Settings, TRELLIS_VERSION
from dreamy_api.models import is_terminal, normalize_status
from dreamy_api.remote import split_model
from dreamy_api.variants import MESH_DEFAULTS, build_input, build_variants, mesh_locked_fields


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("starting", "pending"),
        ("queued", "pending"),
        ("processing", "running"),
        ("succeeded", "succeeded"),
        ("COMPLETED", "succeeded"),
        ("failed", "failed"),
        ("error", "failed"),
        ("canceled", "canceled"),
        ("cancelled", "canceled"),
        ("booting", None),
        (None, None),
        (3, None),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_terminal_states():
    assert [s for s in ("pending", "running", "succeeded", "failed", "canceled") if is_terminal(s)] == [
        "succeeded",
        "failed",
        "canceled",
    ]


def test_split_model():
    assert split_model("google/imagen-4-ultra") == ("google/imagen-4-ultra", None)
    assert split_model("stability-ai/sdxl:39ed52f2") == ("stability-ai/sdxl", "39ed52f2")
    assert split_model(TRELLIS_VERSION) == (None, TRELLIS_VERSION)


def test_build_variants_follow_settings():
    settings = Settings(poll_interval=1.5, image_deadline=60, mesh_deadline=240, chat_wait=30)
    variants = build_variants(settings)

    assert variants["generate"].model == "google/imagen-4-ultra"
    assert variants["generate"].deadline == 60
    assert variants["generate"].defaults == {}
    assert variants["mesh"].model == TRELLIS_VERSION
    assert variants["mesh"].deadline == 240
    assert variants["mesh"].poll_interval == 1.5
    assert variants["chat"].wait == 30


def test_build_input_precedence():
    mesh = build_variants(Settings())["mesh"]
    merged = build_input(mesh, {"mesh_simplify": 0.5, "images": ["x"]}, mesh_locked_fields("https://a/b.png"))

    assert merged["mesh_simplify"] == 0.5
    assert merged["texture_size"] == 2048
    assert merged["images"] == ["https://a/b.png"]
    # the shared defaults are never mutated
    assert "images" not in MESH_DEFAULTS
    assert MESH_DEFAULTS["mesh_simplify"] == 0.9


def test_with_model():
    generate = build_variants(Settings())["generate"]
    assert generate.with_model(None) is generate
    assert generate.with_model("owner/other").model == "owner/other"
    assert generate.model == "google/imagen-4-ultra"


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8_env")
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("DREAMY_POLL_INTERVAL", "0.5")
    monkeypatch.setenv("DREAMY_MESH_DEADLINE", "300")
    monkeypatch.setenv("DREAMY_POLL_RETRIES", "2")
    monkeypatch.setenv("DREAMY_CORS_ORIGINS", "http://a.test, http://b.test")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.api_token == "r8_env"
    assert settings.has_credential
    assert settings.port == 9090
    assert settings.poll_interval == 0.5
    assert settings.mesh_deadline == 300
    assert settings.poll_retries == 2
    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.log_level == "DEBUG"


def test_settings_without_token(monkeypatch):
    monkeypatch.setenv("REPLICATE_API_TOKEN", "")
    monkeypatch.delenv("PORT", raising=False)

    settings = Settings.from_env()

    assert settings.api_token is None
    assert not settings.has_credential
    assert settings.port == 8080
