from stickershelf.config import Settings


def test_defaults(monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("STICKER_DATA_DIR", "STICKER_PACKS_DIR", "HOST_BASE_URL", "GENERATED_PACK_PREFIXES"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.data_dir == "data/packs"
    assert settings.generated_pack_prefixes == ["custom_", "colorstickers_"]
    assert settings.tray_icon_size == 96
    assert settings.host_enabled() is False


def test_environment_overrides(monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STICKER_PACKS_DIR", "/srv/packs")
    monkeypatch.setenv("GENERATED_PACK_PREFIXES", '["mine_"]')
    monkeypatch.setenv("HOST_BASE_URL", "http://host.local")
    monkeypatch.setenv("PROVIDER_AUTHORITY", "com.example.stickers")

    settings = Settings()

    assert settings.data_dir == "/srv/packs"
    assert settings.generated_pack_prefixes == ["mine_"]
    assert settings.provider_authority == "com.example.stickers"
    assert settings.host_enabled() is True
