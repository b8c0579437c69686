"""Directory tree copier with prefix-aware exclusions."""

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import os
import pathlib
import shutil


DEFAULT_EXCLUSIONS: tuple[str, ...] = (
    "node_modules",
    ".git",
    ".hg",
    ".svn",
    ".idea",
    ".vscode",
    ".cache",
    ".parcel-cache",
    "coverage",
)


@dataclass(frozen=True, slots=True)
class CopyStats:
    """Stats collected while copying a directory tree.

    :ivar files_copied: Number of files copied.
    :ivar bytes_copied: Total bytes copied.
    :ivar entries_skipped: Number of excluded files and directories.
    """

    files_copied: int
    bytes_copied: int
    entries_skipped: int


def exclusion_parts(exclusions: Iterable[str]) -> list[tuple[str, ...]]:
    """Split exclusion prefixes into path components.

    :param exclusions: Relative POSIX-style path prefixes.
    :returns: Component tuples, empty and ``.`` entries dropped.
    """

    parts: list[tuple[str, ...]] = []
    for relpath in exclusions:
        p: tuple[str, ...] = pathlib.PurePosixPath(relpath.replace("\\", "/")).parts
        if len(p) == 0 or p == (".",):
            continue
        parts.append(p)
    return parts


def is_excluded(relpath: pathlib.PurePosixPath, exclude_parts: list[tuple[str, ...]]) -> bool:
    """Check if a relative path should be excluded.

    A path is excluded when it equals an exclusion entry or lies below one.
    Matching is done on whole components, so ``build`` never excludes
    ``build2``.

    :param relpath: Path relative to the copy root (POSIX).
    :param exclude_parts: Exclusion prefixes from :func:`exclusion_parts`.
    :returns: ``True`` if it matches an excluded prefix.
    """

    rel_tuple: tuple[str, ...] = relpath.parts
    for ex in exclude_parts:
        if len(rel_tuple) >= len(ex) and rel_tuple[0 : len(ex)] == ex:
            return True
    return False


def _raise_walk_error(err: OSError) -> None:
    raise err


def copy_tree(
    src: pathlib.Path,
    dst: pathlib.Path,
    exclusions: Iterable[str] = (),
    *,
    logger: logging.Logger | None = None,
) -> CopyStats:
    """Mirror ``src`` into ``dst``, skipping excluded path prefixes.

    Relative paths are always computed against ``src`` (the original copy
    root), never against the directory currently being walked. Any I/O error
    aborts the copy and propagates unchanged.

    :param src: Source directory.
    :param dst: Destination directory (created if needed).
    :param exclusions: Relative POSIX-style path prefixes to skip.
    :param logger: Optional logger; one line is logged per skipped entry.
    :returns: Copy statistics.
    """

    if logger is None:
        logger = logging.getLogger("nodegui_packer")

    exclude_parts: list[tuple[str, ...]] = exclusion_parts(exclusions)

    files_copied: int = 0
    bytes_copied: int = 0
    skipped: int = 0

    dst.mkdir(parents=True, exist_ok=True)

    for root_str, dirs, files in os.walk(src, topdown=True, onerror=_raise_walk_error, followlinks=True):
        root_path: pathlib.Path = pathlib.Path(root_str)
        rel_root: pathlib.Path = root_path.relative_to(src)
        rel_root_posix: pathlib.PurePosixPath = pathlib.PurePosixPath(rel_root.as_posix())

        keep_dirs: list[str] = []
        for d in sorted(dirs):
            rel_dir: pathlib.PurePosixPath = rel_root_posix / d
            if is_excluded(rel_dir, exclude_parts) is True:
                logger.info(f"nodegui-packer: skipping {rel_dir.as_posix()}/")
                skipped += 1
                continue
            keep_dirs.append(d)
        dirs[:] = keep_dirs

        out_dir: pathlib.Path = dst / rel_root
        out_dir.mkdir(parents=True, exist_ok=True)

        for name in sorted(files):
            rel_file: pathlib.PurePosixPath = rel_root_posix / name
            if is_excluded(rel_file, exclude_parts) is True:
                logger.info(f"nodegui-packer: skipping {rel_file.as_posix()}")
                skipped += 1
                continue

            src_path: pathlib.Path = root_path / name
            shutil.copy2(src_path, out_dir / name)
            files_copied += 1
            bytes_copied += src_path.stat().st_size

    return CopyStats(files_copied=files_copied, bytes_copied=bytes_copied, entries_skipped=skipped)


def copy_file(src: pathlib.Path, dst: pathlib.Path) -> None:
    """Copy a single file, creating parent directories.

    :param src: Source file.
    :param dst: Destination file path.
    """

    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)
