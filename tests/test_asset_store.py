import pytest

from stickershelf.core.errors import MalformedManifestError
from stickershelf.services.asset_store import AssetStore, generate_sticker_file_name


def test_write_asset_creates_pack_directory(packs_root) -> None:
    store = AssetStore(packs_root)
    store.write_asset("custom_new", "a.webp", b"abc")

    assert (packs_root / "custom_new" / "a.webp").read_bytes() == b"abc"
    assert store.read_asset("custom_new", "a.webp") == b"abc"
    assert store.asset_size("custom_new", "a.webp") == 3


def test_write_leaves_no_temporary_files(packs_root) -> None:
    store = AssetStore(packs_root)
    store.write_asset("custom_new", "a.webp", b"first")
    store.write_asset("custom_new", "a.webp", b"second")

    assert sorted(p.name for p in (packs_root / "custom_new").iterdir()) == ["a.webp"]
    assert store.read_asset("custom_new", "a.webp") == b"second"


def test_missing_resources_return_none(packs_root) -> None:
    store = AssetStore(packs_root)
    assert store.read_manifest("custom_nope") is None
    assert store.read_asset("custom_nope", "a.webp") is None
    assert store.asset_size("custom_nope", "a.webp") is None
    assert store.list_asset_files("custom_nope") == []


def test_read_manifest_raises_on_malformed_document(packs_root) -> None:
    (packs_root / "custom_bad").mkdir()
    (packs_root / "custom_bad" / "pack_info.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(MalformedManifestError):
        AssetStore(packs_root).read_manifest("custom_bad")


def test_list_pack_directories(packs_root) -> None:
    (packs_root / "custom_a").mkdir()
    (packs_root / "other").mkdir()
    (packs_root / "stray.txt").write_text("x")

    assert AssetStore(packs_root).list_pack_directories() == {"custom_a", "other"}


def test_list_pack_directories_without_root(tmp_path) -> None:
    assert AssetStore(tmp_path / "absent").list_pack_directories() == set()


def test_list_asset_files_only_returns_stickers(packs_root) -> None:
    store = AssetStore(packs_root)
    store.write_asset("custom_a", "b.webp", b"1")
    store.write_asset("custom_a", "a.webp", b"1")
    (packs_root / "custom_a" / "pack_info.json").write_text("{}")
    (packs_root / "custom_a" / ".a.webp.123.tmp").write_bytes(b"partial")

    assert store.list_asset_files("custom_a") == ["a.webp", "b.webp"]


@pytest.mark.parametrize("bad", ["", "..", "../etc", "a/b", "a\\b"])
def test_rejects_path_traversal(packs_root, bad: str) -> None:
    store = AssetStore(packs_root)
    with pytest.raises(ValueError):
        store.write_asset(bad, "a.webp", b"x")
    with pytest.raises(ValueError):
        store.write_asset("custom_a", bad, b"x")


def test_generated_file_names_are_unique() -> None:
    names = {generate_sticker_file_name() for _ in range(200)}
    assert len(names) == 200
    assert all(name.startswith("sticker_") and name.endswith(".webp") for name in names)
