import logging
from pathlib import Path, PurePosixPath

import pytest

from nodegui_packer.copier import copy_tree, exclusion_parts, is_excluded


def build_tree(root: Path, files: dict[str, bytes]) -> None:
    for rel, data in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


def listing(root: Path) -> dict[str, bytes]:
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in root.rglob("*") if p.is_file()}


def test_copy_tree_mirrors_files_byte_for_byte(tmp_path):
    src = tmp_path / "src"
    files = {
        "main.js": b"console.log(1)\n",
        "lib/util.js": b"\x00\x01binary\xff",
        "lib/deep/nested/data.json": b"{}",
    }
    build_tree(src, files)
    (src / "empty").mkdir()

    stats = copy_tree(src, tmp_path / "dst")

    assert listing(tmp_path / "dst") == files
    assert (tmp_path / "dst" / "empty").is_dir()
    assert stats.files_copied == 3
    assert stats.bytes_copied == sum(len(v) for v in files.values())
    assert stats.entries_skipped == 0


def test_copy_tree_skips_excluded_prefixes(tmp_path):
    src = tmp_path / "src"
    build_tree(
        src,
        {
            "main.js": b"a",
            "node_modules/x/index.js": b"b",
            ".git/HEAD": b"c",
            "src/app.js": b"d",
        },
    )

    stats = copy_tree(src, tmp_path / "dst", ["node_modules", ".git"])

    assert sorted(listing(tmp_path / "dst")) == ["main.js", "src/app.js"]
    assert not (tmp_path / "dst" / "node_modules").exists()
    assert stats.entries_skipped == 2


def test_exclusion_is_prefix_aware_not_substring(tmp_path):
    src = tmp_path / "src"
    build_tree(
        src,
        {
            "build/out.js": b"1",
            "build2/keep.js": b"2",
            "buildfile": b"3",
        },
    )

    copy_tree(src, tmp_path / "dst", ["build"])

    assert sorted(listing(tmp_path / "dst")) == ["build2/keep.js", "buildfile"]


def test_exclusion_is_relative_to_copy_root(tmp_path):
    src = tmp_path / "src"
    build_tree(
        src,
        {
            "deploy/App/main.js": b"old",
            "deploy/notes.txt": b"keep?",
            "src/deploy/App/file.js": b"nested",
            "src/deployment.js": b"x",
        },
    )

    copy_tree(src, tmp_path / "dst", ["deploy/App"])

    assert sorted(listing(tmp_path / "dst")) == [
        "deploy/notes.txt",
        "src/deploy/App/file.js",
        "src/deployment.js",
    ]


def test_copy_tree_logs_each_skipped_entry(tmp_path, caplog):
    src = tmp_path / "src"
    build_tree(src, {"dist/a.js": b"", "secret.env": b"", "ok.js": b""})

    with caplog.at_level(logging.INFO, logger="nodegui_packer"):
        copy_tree(src, tmp_path / "dst", ["dist", "secret.env"])

    skipped = [r.getMessage() for r in caplog.records if "skipping" in r.getMessage()]
    assert len(skipped) == 2
    assert any("dist/" in m for m in skipped)
    assert any("secret.env" in m for m in skipped)


def test_missing_source_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        copy_tree(tmp_path / "does-not-exist", tmp_path / "dst")


def test_unwritable_destination_raises(tmp_path):
    src = tmp_path / "src"
    build_tree(src, {"a.js": b"a"})
    blocker = tmp_path / "blocker"
    blocker.write_text("I am a file", encoding="utf-8")

    with pytest.raises(OSError):
        copy_tree(src, blocker / "dst")


def test_exclusion_parts_normalizes_entries():
    parts = exclusion_parts(["build/", "", ".", "a\\b", "./cache"])

    assert parts == [("build",), ("a", "b"), ("cache",)]


@pytest.mark.parametrize(
    ("relpath", "expected"),
    [
        ("node_modules", True),
        ("node_modules/leftpad/index.js", True),
        ("node_modules_backup/x", False),
        ("src/node_modules/x", False),
        ("a/b/c", True),
        ("a/bc", False),
    ],
)
def test_is_excluded(relpath, expected):
    parts = exclusion_parts(["node_modules", "a/b"])

    assert is_excluded(PurePosixPath(relpath), parts) is expected
