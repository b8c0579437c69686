"""Packaging orchestrator.

This module sequences a packaging run:

- It validates the request and empties (or creates) ``output/<app name>``.
- It copies the project sources, skipping ``node_modules``, VCS/editor
  metadata, build caches and the output directory itself.
- It stages the qode runtime and Qt, resolves the npm dependency closure and
  copies every resolved package.
- It emits the launcher scripts and bootstrap source, then tries to compile
  the bootstrap. A failed compile is only a warning.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import enum
import logging
import pathlib
import shutil
import time

from nodegui_packer.copier import DEFAULT_EXCLUSIONS, CopyStats, copy_tree, exclusion_parts, is_excluded
from nodegui_packer.errors import CompileStepFailure, ConfigurationError
from nodegui_packer.launcher import (
    C_SOURCE_NAME,
    CSHARP_SOURCE_NAME,
    LauncherArtifacts,
    compile_launcher,
    emit_launcher,
)
from nodegui_packer.resolver import (
    RESERVED_PREFIX,
    read_project_dependencies,
    resolve_closure,
    split_reserved,
)
from nodegui_packer.runtime import PLUGIN_DIRS, QT_CONF_NAME, stage_runtime
from nodegui_packer.target import TargetConfig, resolve_target_config


DEFAULT_APP_NAME: str = "NodeGUIApp"
DEFAULT_ENTRY_FILE: str = "main.js"
DEFAULT_OUTPUT_DIRNAME: str = "deploy"


@dataclass(frozen=True, slots=True)
class PackagingRequest:
    """What to package.

    :ivar source_root: Project directory (contains ``package.json`` and ``node_modules``).
    :ivar output_root: Directory receiving ``<app_name>/``.
    :ivar app_name: Application name.
    :ivar entry_file: Entry script relative to ``source_root``.
    :ivar extra_packages: Packages to include beyond ``package.json``.
    """

    source_root: pathlib.Path
    output_root: pathlib.Path
    app_name: str = DEFAULT_APP_NAME
    entry_file: str = DEFAULT_ENTRY_FILE
    extra_packages: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PackagingOptions:
    """How to package.

    :ivar target: Target OS configuration.
    :ivar qt_version: Explicit Qt bundle version (default: highest installed).
    :ivar compile: Whether to run the external compiler on the launcher source.
    :ivar compiler: Explicit compiler executable.
    :ivar launcher_language: ``csharp`` or ``c``; ``None`` uses the target default.
    :ivar keep_launcher_source: Keep the bootstrap source after compiling.
    """

    target: TargetConfig = field(default_factory=resolve_target_config)
    qt_version: str | None = None
    compile: bool = True
    compiler: str | None = None
    launcher_language: str | None = None
    keep_launcher_source: bool = False


@dataclass(frozen=True, slots=True)
class AppLayout:
    """Validated packaging layout.

    :ivar source_root: Absolute project directory.
    :ivar lookup_root: Installed packages directory (``node_modules``).
    :ivar app_dir: Absolute application output directory.
    :ivar entry_relpath: Entry file relative to both roots (POSIX form).
    :ivar exclusions: Relative prefixes skipped while staging sources.
    """

    source_root: pathlib.Path
    lookup_root: pathlib.Path
    app_dir: pathlib.Path
    entry_relpath: str
    exclusions: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PackagingResult:
    """Outcome of a successful run.

    :ivar app_dir: Populated application directory.
    :ivar dependencies: Packages copied into ``node_modules``.
    :ivar missing_dependencies: Resolved packages not found on disk.
    :ivar launcher: Generated launcher files.
    :ivar executable: Compiled launcher, or ``None`` when compilation did not happen.
    """

    app_dir: pathlib.Path
    dependencies: tuple[str, ...]
    missing_dependencies: tuple[str, ...]
    launcher: LauncherArtifacts
    executable: pathlib.Path | None


class Stage(enum.Enum):
    """Orchestrator states."""

    INITIALIZED = "initialized"
    STAGING_PROJECT = "staging-project"
    STAGING_RUNTIME = "staging-runtime"
    RESOLVING_DEPENDENCIES = "resolving-dependencies"
    STAGING_DEPENDENCIES = "staging-dependencies"
    EMITTING_LAUNCHER = "emitting-launcher"
    COMPILING = "compiling"
    DONE = "done"
    FAILED = "failed"


CompilerFn = Callable[..., pathlib.Path]


def _check_launcher_name(name: str, source_root: pathlib.Path, target: TargetConfig, exclusions: list[str]) -> None:
    exe_name: str = f"{name}{target.executable_suffix}"
    reserved: set[str] = {
        target.runtime_binary,
        target.startup_script,
        target.hidden_script,
        QT_CONF_NAME,
        "node_modules",
        C_SOURCE_NAME,
        CSHARP_SOURCE_NAME,
        *PLUGIN_DIRS,
    }
    if exe_name.casefold() in {r.casefold() for r in reserved}:
        raise ConfigurationError(f"Application name {name!r} collides with the packaged file {exe_name!r}")

    staged: bool = is_excluded(pathlib.PurePosixPath(exe_name), exclusion_parts(exclusions)) is False
    if staged is True and (source_root / exe_name).exists() is True:
        raise ConfigurationError(
            f"Application name {name!r} collides with {exe_name!r} in the source directory"
        )


def prepare_layout(request: PackagingRequest, target: TargetConfig | None = None) -> AppLayout:
    """Validate a request and compute its layout.

    :param request: Packaging request.
    :param target: Target configuration; when given, the launcher name is
        checked against the runtime files staged next to it.
    :returns: Validated layout.
    :raises ConfigurationError: If the request cannot be packaged.
    """

    name: str = request.app_name
    if len(name) == 0 or name in {".", ".."} or "/" in name or "\\" in name:
        raise ConfigurationError(f"Invalid application name: {name!r}")

    source_root: pathlib.Path = request.source_root.resolve()
    if source_root.is_dir() is False:
        raise ConfigurationError(f"Source directory does not exist: {source_root}")

    entry: pathlib.PurePosixPath = pathlib.PurePosixPath(request.entry_file.replace("\\", "/"))
    if entry.is_absolute() is True or ".." in entry.parts or len(entry.parts) == 0:
        raise ConfigurationError(f"Main file must be a path inside the source directory: {request.entry_file!r}")
    entry_path: pathlib.Path = source_root / entry
    if entry_path.is_file() is False:
        raise ConfigurationError(f"Main file not found: {entry_path}")

    output_root: pathlib.Path = request.output_root.resolve()
    app_dir: pathlib.Path = output_root / name
    if app_dir == source_root or source_root.is_relative_to(app_dir) is True:
        raise ConfigurationError(
            f"Output directory {app_dir} would contain the source directory {source_root}"
        )

    lookup_root: pathlib.Path = source_root / "node_modules"
    if app_dir == lookup_root or lookup_root.is_relative_to(app_dir) is True:
        raise ConfigurationError(
            f"Output directory {app_dir} would contain the installed packages in {lookup_root}"
        )

    exclusions: list[str] = list(DEFAULT_EXCLUSIONS)
    if output_root.is_relative_to(source_root) is True and output_root != source_root:
        exclusions.append(output_root.relative_to(source_root).as_posix())
    elif output_root == source_root:
        # app_dir sits among the project files: reuse it only if empty or a previous build
        reusable: bool = app_dir.is_dir() is False or any(app_dir.iterdir()) is False
        if reusable is False and (app_dir / QT_CONF_NAME).is_file() is False:
            raise ConfigurationError(
                f"Output directory {app_dir} holds project files; remove it or choose another application name"
            )
        exclusions.append(name)

    if is_excluded(entry, exclusion_parts(exclusions)) is True:
        raise ConfigurationError(f"Main file {entry.as_posix()!r} lies inside an excluded directory")

    if target is not None:
        _check_launcher_name(name, source_root, target, exclusions)

    return AppLayout(
        source_root=source_root,
        lookup_root=lookup_root,
        app_dir=app_dir,
        entry_relpath=entry.as_posix(),
        exclusions=tuple(exclusions),
    )


def reset_app_dir(app_dir: pathlib.Path) -> None:
    """Create ``app_dir`` or empty it if it already exists.

    :param app_dir: Application output directory.
    """

    if app_dir.is_dir() is True:
        for child in app_dir.iterdir():
            if child.is_dir() is True and child.is_symlink() is False:
                shutil.rmtree(child)
            else:
                child.unlink()
        return
    app_dir.mkdir(parents=True, exist_ok=True)


class Packager:
    """Runs one packaging request through every stage.

    ``stage`` always reflects the current state; after a failure it is
    :attr:`Stage.FAILED` and ``failure`` holds the original exception, which
    is also re-raised unchanged.
    """

    def __init__(
        self,
        request: PackagingRequest,
        options: PackagingOptions | None = None,
        *,
        logger: logging.Logger | None = None,
        compiler: CompilerFn = compile_launcher,
    ) -> None:
        self.request: PackagingRequest = request
        self.options: PackagingOptions = options if options is not None else PackagingOptions()
        self.logger: logging.Logger = logger if logger is not None else logging.getLogger("nodegui_packer")
        self.compiler: CompilerFn = compiler
        self.stage: Stage = Stage.INITIALIZED
        self.failure: Exception | None = None

    def _enter(self, stage: Stage) -> None:
        self.logger.debug(f"nodegui-packer: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def run(self) -> PackagingResult:
        """Package the application.

        :returns: Result of the run.
        :raises ConfigurationError: If the request is invalid.
        :raises MandatoryAssetMissing: If qode or ``@nodegui`` is not installed.
        :raises OSError: On any filesystem failure.
        """

        if self.stage is not Stage.INITIALIZED:
            raise RuntimeError(f"Packager already ran (stage={self.stage.value})")
        try:
            return self._run()
        except Exception as e:
            self.failure = e
            self._enter(Stage.FAILED)
            self.logger.error(f"nodegui-packer: packaging failed: {e}")
            raise

    def _run(self) -> PackagingResult:
        logger: logging.Logger = self.logger
        request: PackagingRequest = self.request
        options: PackagingOptions = self.options
        target: TargetConfig = options.target

        t_total0: float = time.perf_counter()
        logger.info(f"nodegui-packer: starting packaging process for {request.app_name}...")

        layout: AppLayout = prepare_layout(request, target)
        logger.info(f"nodegui-packer: source={layout.source_root}")
        logger.info(f"nodegui-packer: output={layout.app_dir}")
        logger.info(f"nodegui-packer: main file={layout.entry_relpath} target={target.os_name}")
        if logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"nodegui-packer: staging excludes={list(layout.exclusions)}")

        reset_app_dir(layout.app_dir)

        self._enter(Stage.STAGING_PROJECT)
        t0: float = time.perf_counter()
        stats: CopyStats = copy_tree(layout.source_root, layout.app_dir, layout.exclusions, logger=logger)
        (layout.app_dir / "node_modules").mkdir(exist_ok=True)
        logger.info(
            f"nodegui-packer: staged project ({stats.files_copied} files, "
            f"{stats.bytes_copied / (1024 * 1024):.1f} MiB, {stats.entries_skipped} skipped) "
            f"in {time.perf_counter() - t0:.2f}s"
        )

        self._enter(Stage.STAGING_RUNTIME)
        t0 = time.perf_counter()
        stage_runtime(
            layout.lookup_root,
            layout.app_dir,
            target,
            qt_version=options.qt_version,
            logger=logger,
        )
        logger.info(f"nodegui-packer: staged runtime in {time.perf_counter() - t0:.2f}s")

        self._enter(Stage.RESOLVING_DEPENDENCIES)
        declared: list[str] = read_project_dependencies(layout.source_root, logger=logger)
        direct, reserved = split_reserved([*declared, *request.extra_packages], RESERVED_PREFIX)
        if len(reserved) > 0:
            logger.debug(f"nodegui-packer: staged with the runtime: {reserved}")
        closure: list[str] = resolve_closure(direct, layout.lookup_root, logger=logger)
        logger.info(f"nodegui-packer: resolved {len(closure)} packages from {len(direct)} direct dependencies")

        self._enter(Stage.STAGING_DEPENDENCIES)
        copied: list[str] = []
        missing: list[str] = []
        if len(closure) == 0:
            logger.info("nodegui-packer: no dependencies to copy")
        for dep in closure:
            module_path: pathlib.Path = layout.lookup_root / dep
            if module_path.is_dir() is False:
                logger.warning(f"nodegui-packer:   - {dep} (not found, skipping)")
                missing.append(dep)
                continue
            logger.info(f"nodegui-packer:   - {dep}")
            copy_tree(module_path, layout.app_dir / "node_modules" / dep, logger=logger)
            copied.append(dep)

        self._enter(Stage.EMITTING_LAUNCHER)
        artifacts: LauncherArtifacts = emit_launcher(
            layout.app_dir,
            request.app_name,
            layout.entry_relpath,
            target,
            language=options.launcher_language,
            logger=logger,
        )

        executable: pathlib.Path | None = None
        if options.compile is True:
            self._enter(Stage.COMPILING)
            try:
                executable = self.compiler(
                    artifacts,
                    layout.app_dir,
                    request.app_name,
                    target,
                    compiler=options.compiler,
                    keep_source=options.keep_launcher_source,
                    logger=logger,
                )
            except CompileStepFailure as e:
                logger.warning(f"nodegui-packer: failed to compile launcher: {e}")
                logger.warning(
                    f"nodegui-packer: compile {artifacts.source_path.name} manually to get a native launcher"
                )
            else:
                logger.info(f"nodegui-packer: launcher created: {executable}")

        self._enter(Stage.DONE)
        logger.info(
            f"nodegui-packer: packaging complete in {time.perf_counter() - t_total0:.2f}s; "
            f"application available at {layout.app_dir}"
        )
        return PackagingResult(
            app_dir=layout.app_dir,
            dependencies=tuple(copied),
            missing_dependencies=tuple(missing),
            launcher=artifacts,
            executable=executable,
        )


def package_app(
    request: PackagingRequest,
    options: PackagingOptions | None = None,
    *,
    logger: logging.Logger | None = None,
    compiler: CompilerFn = compile_launcher,
) -> pathlib.Path:
    """Package an application and return its directory.

    :param request: Packaging request.
    :param options: Packaging options.
    :param logger: Optional logger for progress output.
    :param compiler: Compile collaborator (see :func:`~nodegui_packer.launcher.compile_launcher`).
    :returns: Absolute path of the populated application directory.
    """

    packager: Packager = Packager(request, options, logger=logger, compiler=compiler)
    return packager.run().app_dir
