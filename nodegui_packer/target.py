"""Target resolution helpers.

This module is intentionally small and "pragmatic":

- It accepts ``native``, an OS name (e.g. ``windows``) or a Rust-like target
  triple (e.g. ``x86_64-pc-windows-msvc``).
- It produces every OS-specific constant the packager needs: runtime binary
  name, Qt toolchain layout, library globs, script names and launcher flavor.
"""

from dataclasses import dataclass
import sys


class TargetResolutionError(ValueError):
    """Raised when a target spec cannot be resolved to a supported OS."""


@dataclass(frozen=True, slots=True)
class TargetConfig:
    """Packaging target configuration.

    :ivar os_name: Either ``windows`` or ``linux``.
    :ivar runtime_binary: File name of the qode runtime binary.
    :ivar qt_toolchain: Toolchain directory inside the miniqt bundle.
    :ivar qt_library_dir: Library directory inside the toolchain directory.
    :ivar library_patterns: Glob patterns matching Qt shared libraries.
    :ivar library_path_var: Environment variable searched for shared libraries.
    :ivar path_separator: Separator used inside generated script paths.
    :ivar path_list_separator: Separator between entries of a search path.
    :ivar startup_script: File name of the console startup script.
    :ivar hidden_script: File name of the "run without console" script.
    :ivar executable_suffix: Suffix of native executables.
    :ivar launcher_language: Default bootstrap language (``csharp`` or ``c``).
    """

    os_name: str
    runtime_binary: str
    qt_toolchain: str
    qt_library_dir: str
    library_patterns: tuple[str, ...]
    library_path_var: str
    path_separator: str
    path_list_separator: str
    startup_script: str
    hidden_script: str
    executable_suffix: str
    launcher_language: str


WINDOWS_TARGET: TargetConfig = TargetConfig(
    os_name="windows",
    runtime_binary="qode.exe",
    qt_toolchain="msvc2019_64",
    qt_library_dir="bin",
    library_patterns=("*.dll",),
    library_path_var="PATH",
    path_separator="\\",
    path_list_separator=";",
    startup_script="debug.bat",
    hidden_script="run-hidden.ps1",
    executable_suffix=".exe",
    launcher_language="csharp",
)

LINUX_TARGET: TargetConfig = TargetConfig(
    os_name="linux",
    runtime_binary="qode",
    qt_toolchain="gcc_64",
    qt_library_dir="lib",
    library_patterns=("*.so", "*.so.*"),
    library_path_var="LD_LIBRARY_PATH",
    path_separator="/",
    path_list_separator=":",
    startup_script="run.sh",
    hidden_script="run-hidden.sh",
    executable_suffix="",
    launcher_language="c",
)

_TARGETS_BY_OS: dict[str, TargetConfig] = {
    "windows": WINDOWS_TARGET,
    "linux": LINUX_TARGET,
}

_SUPPORTED_ARCHES: set[str] = {"x86_64", "amd64", "aarch64", "arm64"}


def resolve_target_config(target: str = "native") -> TargetConfig:
    """Resolve a user-supplied target into a :class:`~TargetConfig`.

    :param target: ``native``, an OS name or a target triple.
    :returns: Resolved target config.
    :raises TargetResolutionError: If the target is not supported.
    """

    if target == "native":
        return _target_for_os(_os_from_platform(sys.platform))

    normalized: str = target.strip().lower()
    if normalized in {"windows", "win32", "win64", "win"}:
        return WINDOWS_TARGET
    if normalized == "linux":
        return LINUX_TARGET

    parts: list[str] = normalized.split("-")
    if len(parts) < 3:
        raise TargetResolutionError(
            f"Unrecognized target spec {target!r}. Provide 'native', an OS name or a target triple."
        )

    arch: str = parts[0]
    os_part: str = parts[2]
    if arch not in _SUPPORTED_ARCHES:
        raise TargetResolutionError(f"Unsupported arch in target triple: {arch!r}")
    return _target_for_os(os_part)


def _os_from_platform(platform: str) -> str:
    """Map a ``sys.platform`` value onto an OS name.

    :param platform: Value of ``sys.platform``.
    :returns: OS name understood by :func:`_target_for_os`.
    """

    if platform.startswith("win") is True:
        return "windows"
    if platform.startswith("linux") is True:
        return "linux"
    return platform


def _target_for_os(os_name: str) -> TargetConfig:
    """Look up the target config for an OS name.

    :param os_name: OS component (e.g. ``windows``, ``linux``, ``darwin``).
    :returns: Target config.
    :raises TargetResolutionError: If the OS is not supported.
    """

    cfg: TargetConfig | None = _TARGETS_BY_OS.get(os_name)
    if cfg is None:
        raise TargetResolutionError(
            f"Unsupported target OS {os_name!r}; supported: {', '.join(sorted(_TARGETS_BY_OS))}."
        )
    return cfg
