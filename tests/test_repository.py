import asyncio
import json
from pathlib import Path

from stickershelf.core.models import (
    BundledDiscovery,
    GeneratedDiscovery,
    InvalidDiscovery,
    PackSource,
    StickerAsset,
    StickerPackManifest,
)
from stickershelf.services.asset_store import AssetStore
from stickershelf.services.bundled import BundledPackSource
from stickershelf.services.notifier import ChangeNotifier
from stickershelf.services.repository import (
    ADOPTED_ACCESSIBILITY_TEXT,
    PackRepository,
    reconcile,
)


def _write_bundled(root: Path, packs: list[dict], **top_level) -> BundledPackSource:
    root.mkdir(parents=True, exist_ok=True)
    for pack in packs:
        directory = root / pack["identifier"]
        directory.mkdir(exist_ok=True)
        for sticker in pack.get("stickers", []):
            (directory / sticker["image_file"]).write_bytes(b"b" * 10)
    document = {"sticker_packs": packs, **top_level}
    (root / "contents.json").write_text(json.dumps(document), encoding="utf-8")
    return BundledPackSource(root)


def _bundled_pack(identifier: str, name: str = "Bundled", files: tuple[str, ...] = ("b1.webp",)):
    return {
        "identifier": identifier,
        "name": name,
        "publisher": "vendor",
        "tray_image_file": "tray.webp",
        "stickers": [{"image_file": file_name, "emojis": ["☕"]} for file_name in files],
    }


def _manifest(identifier: str, files: tuple[str, ...] = ("a.webp",), name: str = "") -> StickerPackManifest:
    return StickerPackManifest(
        identifier=identifier,
        name=name or identifier,
        publisher="p",
        tray_image_file="tray.webp",
        stickers=tuple(StickerAsset(f, ("😀",), size=1) for f in files),
    )


async def _list(repository: PackRepository):
    return await repository.list_packs()


def test_missing_sticker_file_is_excluded(packs_root, make_pack) -> None:
    make_pack("custom_p1", [("s1.webp", 100), ("s2.webp", 200)], missing=["s3.webp"])
    repository = PackRepository(AssetStore(packs_root))

    packs = asyncio.run(_list(repository))

    assert len(packs) == 1
    assert [s.image_file for s in packs[0].stickers] == ["s1.webp", "s2.webp"]
    assert packs[0].total_size == 300


def test_malformed_pack_is_omitted_and_others_survive(packs_root, make_pack) -> None:
    make_pack("custom_p1", [("a.webp", 10)])
    make_pack("custom_p2", [("b.webp", 10)])
    (packs_root / "custom_p3").mkdir()
    (packs_root / "custom_p3" / "pack_info.json").write_text(
        json.dumps({"identifier": "custom_p3", "name": "no publisher"}), encoding="utf-8"
    )
    repository = PackRepository(AssetStore(packs_root))

    packs = asyncio.run(_list(repository))

    assert [p.identifier for p in packs] == ["custom_p1", "custom_p2"]


def test_identifier_mismatch_is_rejected(packs_root, make_pack) -> None:
    directory = make_pack("custom_p1", [("a.webp", 10)])
    document = json.loads((directory / "pack_info.json").read_text(encoding="utf-8"))
    document["identifier"] = "custom_other"
    (directory / "pack_info.json").write_text(json.dumps(document), encoding="utf-8")

    discoveries = PackRepository(AssetStore(packs_root)).discover_generated()

    assert len(discoveries) == 1
    assert isinstance(discoveries[0], InvalidDiscovery)


def test_unlisted_file_is_adopted_with_placeholder(packs_root, make_pack) -> None:
    make_pack("custom_p1", [("a.webp", 10)], unlisted=[("z.webp", 7)])
    repository = PackRepository(AssetStore(packs_root))

    pack = asyncio.run(_list(repository))[0]

    assert [s.image_file for s in pack.stickers] == ["a.webp", "z.webp"]
    adopted = pack.stickers[1]
    assert adopted.emojis == ("🎨",)
    assert adopted.accessibility_text == ADOPTED_ACCESSIBILITY_TEXT
    assert adopted.size == 7
    assert pack.find_sticker("tray_icon.webp") is None


def test_directories_without_prefix_or_manifest_are_ignored(packs_root, make_pack) -> None:
    make_pack("custom_p1", [("a.webp", 10)])
    make_pack("someone_else", [("a.webp", 10)])
    (packs_root / "custom_empty_dir").mkdir()
    repository = PackRepository(AssetStore(packs_root))

    packs = asyncio.run(_list(repository))

    assert [p.identifier for p in packs] == ["custom_p1"]


def test_custom_prefixes(packs_root, make_pack) -> None:
    make_pack("custom_p1", [("a.webp", 10)])
    make_pack("mine_p2", [("a.webp", 10)])
    repository = PackRepository(AssetStore(packs_root), generated_prefixes=["mine_"])

    packs = asyncio.run(_list(repository))

    assert [p.identifier for p in packs] == ["mine_p2"]


def test_pack_without_stickers_is_not_listed(packs_root, make_pack) -> None:
    make_pack("custom_empty", [])
    make_pack("custom_gone", [], missing=["x.webp"])
    make_pack("custom_ok", [("a.webp", 10)])
    repository = PackRepository(AssetStore(packs_root))

    packs = asyncio.run(_list(repository))

    assert [p.identifier for p in packs] == ["custom_ok"]


def test_bundled_and_generated_are_merged(tmp_path, packs_root, make_pack) -> None:
    bundled = _write_bundled(
        tmp_path / "bundled",
        [_bundled_pack("classic"), _bundled_pack("shared", name="Bundled shared")],
        android_play_store_link="https://play.example/app",
    )
    make_pack("custom_p1", [("a.webp", 10)])
    repository = PackRepository(AssetStore(packs_root), bundled=bundled)

    packs = asyncio.run(_list(repository))

    assert [p.identifier for p in packs] == ["classic", "shared", "custom_p1"]
    assert packs[0].source == PackSource.BUNDLED
    assert packs[0].android_play_store_link == "https://play.example/app"
    assert packs[0].total_size == 10
    assert packs[2].source == PackSource.GENERATED


def test_duplicate_identifier_last_one_wins_in_place(tmp_path, packs_root, make_pack) -> None:
    bundled = _write_bundled(
        tmp_path / "bundled",
        [_bundled_pack("custom_dup", name="Bundled"), _bundled_pack("classic")],
    )
    make_pack("custom_dup", [("a.webp", 10), ("b.webp", 20)])
    repository = PackRepository(AssetStore(packs_root), bundled=bundled)

    packs = asyncio.run(_list(repository))

    assert [p.identifier for p in packs] == ["custom_dup", "classic"]
    assert packs[0].name == "Pack custom_dup"
    assert packs[0].source == PackSource.GENERATED
    assert len({p.identifier for p in packs}) == len(packs)


def test_reconcile_rules() -> None:
    first = _manifest("x", name="first")
    second = _manifest("x", name="second")
    empty = _manifest("y", files=())

    merged = reconcile(
        [
            BundledDiscovery(first),
            InvalidDiscovery("somewhere", "broken"),
            BundledDiscovery(_manifest("z")),
            GeneratedDiscovery(empty),
            GeneratedDiscovery(second, tray_missing=True),
        ]
    )

    assert [(p.identifier, p.name) for p in merged] == [("x", "second"), ("z", "z")]


def test_bundled_invalid_contents(tmp_path) -> None:
    root = tmp_path / "bundled"
    root.mkdir()
    (root / "contents.json").write_text("{broken", encoding="utf-8")

    discoveries = BundledPackSource(root).discover()

    assert len(discoveries) == 1
    assert isinstance(discoveries[0], InvalidDiscovery)
    assert BundledPackSource(tmp_path / "absent").discover() == []


def test_bundled_entry_errors_are_isolated(tmp_path) -> None:
    broken = {"identifier": "broken", "name": "x"}
    bundled = _write_bundled(tmp_path / "bundled", [_bundled_pack("classic")])
    document = json.loads((bundled.root / "contents.json").read_text(encoding="utf-8"))
    document["sticker_packs"].append(broken)
    (bundled.root / "contents.json").write_text(json.dumps(document), encoding="utf-8")

    discoveries = bundled.discover()

    assert isinstance(discoveries[0], BundledDiscovery)
    assert isinstance(discoveries[1], InvalidDiscovery)


def test_cached_view_until_invalidated(packs_root, make_pack) -> None:
    make_pack("custom_p1", [("a.webp", 10)])
    repository = PackRepository(AssetStore(packs_root))

    async def _flow() -> None:
        first = await repository.list_packs()
        make_pack("custom_p2", [("b.webp", 10)])
        second = await repository.list_packs()
        assert second is first

        repository.invalidate("custom_p2")
        third = await repository.list_packs()
        assert [p.identifier for p in third] == ["custom_p1", "custom_p2"]
        assert await repository.find_pack("custom_p2") is not None
        assert await repository.find_pack("custom_missing") is None

    asyncio.run(_flow())


def test_concurrent_first_reads_compute_once(packs_root, make_pack, monkeypatch) -> None:
    make_pack("custom_p1", [("a.webp", 10)])
    repository = PackRepository(AssetStore(packs_root))
    calls = []
    original = repository.discover_all

    def _counting():
        calls.append(1)
        return original()

    monkeypatch.setattr(repository, "discover_all", _counting)

    async def _flow():
        return await asyncio.gather(*(repository.list_packs() for _ in range(5)))

    results = asyncio.run(_flow())

    assert len(calls) == 1
    assert all(result is results[0] for result in results)


def test_invalidate_publishes_change(packs_root) -> None:
    notifier = ChangeNotifier()
    events: list[str | None] = []
    notifier.subscribe("*", events.append)
    repository = PackRepository(AssetStore(packs_root), notifier=notifier)

    repository.invalidate("custom_p1")
    repository.invalidate()

    assert events == ["custom_p1", None]


def test_tray_missing_is_flagged(packs_root, make_pack) -> None:
    make_pack("custom_p1", [("a.webp", 10)], tray=False)

    discoveries = PackRepository(AssetStore(packs_root)).discover_generated()

    assert isinstance(discoveries[0], GeneratedDiscovery)
    assert discoveries[0].tray_missing is True
