from __future__ import annotations

from pathlib import Path

from taleweaver.pipeline import ImageKind, build_references


def test_cover_uses_only_inspiration(tmp_path: Path):
    cover = tmp_path / "cover.png"
    cover.write_bytes(b"cover")

    references = build_references(ImageKind.COVER, ["a.jpg", "b.jpg"], cover)

    assert references == ["a.jpg", "b.jpg"]


def test_page_appends_existing_cover_after_inspiration(tmp_path: Path):
    cover = tmp_path / "cover.png"
    cover.write_bytes(b"cover")

    references = build_references(ImageKind.PAGE, ["a.jpg"], cover)

    assert references == ["a.jpg", cover]


def test_back_cover_matches_page_rule():
    url = "https://cdn.example.com/cover.png"

    assert build_references(ImageKind.BACK_COVER, [], url) == [url]


def test_missing_cover_is_skipped(tmp_path: Path):
    missing = tmp_path / "not-rendered.png"

    assert build_references(ImageKind.PAGE, ["a.jpg"], missing) == ["a.jpg"]
    assert build_references(ImageKind.PAGE, ["a.jpg"], None) == ["a.jpg"]


def test_no_inspiration_and_no_cover_is_empty():
    assert build_references(ImageKind.COVER, []) == []
    assert build_references(ImageKind.PAGE, []) == []


def test_input_sequence_is_not_mutated(tmp_path: Path):
    cover = tmp_path / "cover.png"
    cover.write_bytes(b"cover")
    inspiration = ["a.jpg"]

    build_references(ImageKind.PAGE, inspiration, cover)

    assert inspiration == ["a.jpg"]
