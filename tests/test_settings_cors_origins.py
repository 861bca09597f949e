import pytest

from trialproxy.app.core.config import Settings


def test_cors_origins_accepts_host_without_json(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", "app.example.com")

    settings = Settings(_env_file=None)
    assert settings.cors_origins == ["http://app.example.com", "https://app.example.com"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('["http://localhost:5173"]', ["http://localhost:5173"]),
        ("http://a.example, https://b.example", ["http://a.example", "https://b.example"]),
        ("https://a.example https://a.example", ["https://a.example"]),
        ("http://a.example,*", ["*"]),
        ("*", ["*"]),
        ("[]", []),
        ("", []),
    ],
)
def test_cors_origins_parsing_variants(monkeypatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ORIGINS", raw)

    settings = Settings(_env_file=None)
    assert settings.cors_origins == expected


def test_cors_origins_default_allows_any(monkeypatch) -> None:
    monkeypatch.delenv("CORS_ORIGINS", raising=False)

    assert Settings(_env_file=None).cors_origins == ["*"]
