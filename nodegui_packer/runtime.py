"""Runtime asset staging.

Locates the qode runtime binary, the ``@nodegui`` package namespace, the Qt
shared libraries and the Qt plugin directories inside an installed
``node_modules`` tree and copies them into the application directory.

Each asset carries a ``required`` flag: a missing required asset aborts
packaging, a missing optional one is only logged.
"""

from dataclasses import dataclass
import fnmatch
import logging
import pathlib
import re

from nodegui_packer.copier import copy_file, copy_tree
from nodegui_packer.errors import ConfigurationError, MandatoryAssetMissing
from nodegui_packer.target import TargetConfig


RUNTIME_NAMESPACE: str = "@nodegui"
PLUGIN_DIRS: tuple[str, ...] = ("platforms", "styles", "imageformats")
QT_CONF_NAME: str = "qt.conf"
QT_CONF_TEXT: str = "[Paths]\nPlugins=./\nPrefixes=./\n"

_VERSION_PART_RE: re.Pattern[str] = re.compile(r"\d+")


@dataclass(frozen=True, slots=True)
class RuntimeAsset:
    """One piece of the runtime to stage.

    :ivar kind: ``file``, ``tree`` or ``libraries``.
    :ivar label: Human-readable name used in log output.
    :ivar source: Source file or directory.
    :ivar destination: Destination file (``file``) or directory.
    :ivar required: Whether absence is fatal.
    :ivar patterns: Glob patterns selecting files (``libraries`` only).
    """

    kind: str
    label: str
    source: pathlib.Path
    destination: pathlib.Path
    required: bool
    patterns: tuple[str, ...] = ()


def _version_key(name: str) -> tuple[tuple[int, ...], str]:
    """Sort key comparing numeric components, then the raw name.

    :param name: Version directory name (e.g. ``6.4.1``).
    :returns: Sort key.
    """

    nums: tuple[int, ...] = tuple(int(p) for p in _VERSION_PART_RE.findall(name))
    return (nums, name)


def select_qt_version(miniqt_dir: pathlib.Path, requested: str | None = None) -> str | None:
    """Pick the Qt bundle version directory to stage.

    :param miniqt_dir: The ``miniqt`` directory of the nodegui package.
    :param requested: Explicit version; must exist when given.
    :returns: The explicit version, else the highest installed version, or
        ``None`` when no bundle is installed.
    :raises ConfigurationError: If ``requested`` is not installed.
    """

    if requested is not None:
        if (miniqt_dir / requested).is_dir() is False:
            raise ConfigurationError(f"Requested Qt version {requested!r} not found in {miniqt_dir}")
        return requested

    if miniqt_dir.is_dir() is False:
        return None

    versions: list[str] = [p.name for p in miniqt_dir.iterdir() if p.is_dir() is True]
    if len(versions) == 0:
        return None
    return max(versions, key=_version_key)


def plan_runtime_assets(
    lookup_root: pathlib.Path,
    app_dir: pathlib.Path,
    target: TargetConfig,
    qt_version: str | None,
) -> list[RuntimeAsset]:
    """List the runtime assets for a target.

    :param lookup_root: Installed ``node_modules`` directory.
    :param app_dir: Application output directory.
    :param target: Packaging target.
    :param qt_version: Selected Qt bundle version (``None`` skips Qt assets).
    :returns: Assets in staging order.
    """

    namespace_dir: pathlib.Path = lookup_root / RUNTIME_NAMESPACE
    assets: list[RuntimeAsset] = [
        RuntimeAsset(
            kind="file",
            label="qode runtime binary",
            source=namespace_dir / "qode" / "binaries" / target.runtime_binary,
            destination=app_dir / target.runtime_binary,
            required=True,
        ),
        RuntimeAsset(
            kind="tree",
            label=f"{RUNTIME_NAMESPACE} modules",
            source=namespace_dir,
            destination=app_dir / "node_modules" / RUNTIME_NAMESPACE,
            required=True,
        ),
    ]

    if qt_version is None:
        return assets

    toolchain_dir: pathlib.Path = namespace_dir / "nodegui" / "miniqt" / qt_version / target.qt_toolchain
    assets.append(
        RuntimeAsset(
            kind="libraries",
            label=f"Qt {qt_version} libraries",
            source=toolchain_dir / target.qt_library_dir,
            destination=app_dir,
            required=False,
            patterns=target.library_patterns,
        )
    )
    for plugin in PLUGIN_DIRS:
        assets.append(
            RuntimeAsset(
                kind="tree",
                label=f"Qt {plugin} plugins",
                source=toolchain_dir / "plugins" / plugin,
                destination=app_dir / plugin,
                required=False,
            )
        )
    return assets


def stage_runtime(
    lookup_root: pathlib.Path,
    app_dir: pathlib.Path,
    target: TargetConfig,
    *,
    qt_version: str | None = None,
    logger: logging.Logger | None = None,
) -> list[RuntimeAsset]:
    """Copy the runtime into the application directory.

    :param lookup_root: Installed ``node_modules`` directory.
    :param app_dir: Application output directory.
    :param target: Packaging target.
    :param qt_version: Optional explicit Qt bundle version.
    :param logger: Optional logger.
    :returns: Assets that were staged.
    :raises MandatoryAssetMissing: If qode or the ``@nodegui`` namespace is absent.
    """

    if logger is None:
        logger = logging.getLogger("nodegui_packer")

    miniqt_dir: pathlib.Path = lookup_root / RUNTIME_NAMESPACE / "nodegui" / "miniqt"
    selected: str | None = select_qt_version(miniqt_dir, qt_version)
    if selected is None:
        logger.warning(f"nodegui-packer: no Qt bundle found in {miniqt_dir}; skipping Qt libraries and plugins")
    else:
        logger.info(f"nodegui-packer: using Qt {selected} ({target.qt_toolchain})")

    staged: list[RuntimeAsset] = []
    for asset in plan_runtime_assets(lookup_root, app_dir, target, selected):
        if asset.source.exists() is False:
            if asset.required is True:
                raise MandatoryAssetMissing(f"Missing {asset.label}: {asset.source}")
            logger.warning(f"nodegui-packer: {asset.label} not found at {asset.source}; skipping")
            continue

        logger.info(f"nodegui-packer: copying {asset.label}")
        if asset.kind == "file":
            copy_file(asset.source, asset.destination)
        elif asset.kind == "tree":
            copy_tree(asset.source, asset.destination, logger=logger)
        elif asset.kind == "libraries":
            count: int = _copy_libraries(asset.source, asset.destination, asset.patterns)
            logger.info(f"nodegui-packer: copied {count} shared libraries")
        else:
            raise AssertionError(f"Unhandled asset kind: {asset.kind}")
        staged.append(asset)

    (app_dir / QT_CONF_NAME).write_text(QT_CONF_TEXT, encoding="utf-8")
    return staged


def _copy_libraries(src_dir: pathlib.Path, dst_dir: pathlib.Path, patterns: tuple[str, ...]) -> int:
    """Copy files matching any pattern from ``src_dir`` into ``dst_dir``.

    :param src_dir: Library directory.
    :param dst_dir: Destination directory.
    :param patterns: Glob patterns on file names.
    :returns: Number of files copied.
    """

    count: int = 0
    for p in sorted(src_dir.iterdir()):
        if p.is_file() is False:
            continue
        if any(fnmatch.fnmatchcase(p.name, pat) for pat in patterns) is False:
            continue
        copy_file(p, dst_dir / p.name)
        count += 1
    return count
