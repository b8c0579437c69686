"""Dependency closure resolution over an on-disk ``node_modules`` tree.

The resolver is best-effort: it trusts whatever is already installed under
the lookup root, treats packages without a readable ``package.json`` as
leaves and never validates versions.
"""

from collections import deque
from collections.abc import Iterable
import json
import logging
import pathlib


MANIFEST_NAME: str = "package.json"
RESERVED_PREFIX: str = "@nodegui/"
DEPENDENCY_FIELDS: tuple[str, ...] = ("dependencies", "optionalDependencies")


def read_manifest_dependencies(
    manifest_path: pathlib.Path,
    *,
    fields: tuple[str, ...] = DEPENDENCY_FIELDS,
    logger: logging.Logger | None = None,
) -> list[str] | None:
    """Read declared dependency names from a ``package.json``.

    :param manifest_path: Path to the manifest.
    :param fields: Mapping fields whose keys are dependency names.
    :param logger: Optional logger for warnings.
    :returns: ``None`` if the manifest does not exist, otherwise the declared
        names in declaration order. A malformed manifest yields ``[]``.
    """

    if logger is None:
        logger = logging.getLogger("nodegui_packer")

    if manifest_path.is_file() is False:
        return None

    raw: bytes = manifest_path.read_bytes()
    try:
        doc = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"nodegui-packer: malformed manifest {manifest_path}: {e}; treating as leaf")
        return []

    if isinstance(doc, dict) is False:
        logger.warning(f"nodegui-packer: manifest {manifest_path} is not a JSON object; treating as leaf")
        return []

    names: list[str] = []
    for field in fields:
        declared = doc.get(field)
        if declared is None:
            continue
        if isinstance(declared, dict) is False:
            logger.warning(
                f"nodegui-packer: manifest {manifest_path} has a non-mapping {field!r}; ignoring it"
            )
            continue
        for name in declared:
            if name not in names:
                names.append(name)
    return names


def read_project_dependencies(
    source_root: pathlib.Path,
    *,
    logger: logging.Logger | None = None,
) -> list[str]:
    """Read the project's own directly declared dependencies.

    Only the ``dependencies`` field counts; dev dependencies are never
    packaged.

    :param source_root: Project root containing ``package.json``.
    :param logger: Optional logger.
    :returns: Declared dependency names (empty when there is no manifest).
    """

    if logger is None:
        logger = logging.getLogger("nodegui_packer")

    manifest: pathlib.Path = source_root / MANIFEST_NAME
    names: list[str] | None = read_manifest_dependencies(manifest, fields=("dependencies",), logger=logger)
    if names is None:
        logger.warning(f"nodegui-packer: no {MANIFEST_NAME} in {source_root}; no declared dependencies")
        return []
    logger.info(f"nodegui-packer: found {len(names)} dependencies in {MANIFEST_NAME}")
    return names


def split_reserved(
    names: Iterable[str],
    reserved_prefix: str = RESERVED_PREFIX,
) -> tuple[list[str], list[str]]:
    """Partition names into (regular, reserved), dropping duplicates.

    :param names: Dependency names.
    :param reserved_prefix: Runtime namespace prefix.
    :returns: Regular names and reserved-namespace names, in input order.
    """

    regular: list[str] = []
    reserved: list[str] = []
    for name in names:
        bucket: list[str] = reserved if name.startswith(reserved_prefix) is True else regular
        if name not in bucket:
            bucket.append(name)
    return regular, reserved


def resolve_closure(
    direct: Iterable[str],
    lookup_root: pathlib.Path,
    *,
    reserved_prefix: str = RESERVED_PREFIX,
    logger: logging.Logger | None = None,
) -> list[str]:
    """Compute the transitive closure of dependency names.

    Breadth-first over an explicit frontier. Each name's manifest
    (``lookup_root/<name>/package.json``) is inspected at most once, so cycles
    terminate. Discovered names under ``reserved_prefix`` are never added;
    the runtime locator stages that namespace wholesale.

    :param direct: Seed names; all of them are part of the result.
    :param lookup_root: Directory holding installed packages.
    :param reserved_prefix: Runtime namespace prefix to leave out.
    :param logger: Optional logger.
    :returns: Closure in insertion order.
    """

    if logger is None:
        logger = logging.getLogger("nodegui_packer")

    result: dict[str, None] = dict.fromkeys(direct)
    visited: set[str] = set()
    frontier: deque[str] = deque(result)

    while len(frontier) > 0:
        name: str = frontier.popleft()
        if name in visited:
            continue
        visited.add(name)

        declared: list[str] | None = read_manifest_dependencies(
            lookup_root / name / MANIFEST_NAME,
            logger=logger,
        )
        if declared is None:
            logger.debug(f"nodegui-packer: {name} has no manifest; treating as leaf")
            continue

        for dep in declared:
            if dep in result:
                continue
            if dep.startswith(reserved_prefix) is True:
                continue
            logger.debug(f"nodegui-packer: {name} -> {dep}")
            result[dep] = None
            frontier.append(dep)

    return list(result)
