import json
import logging
from pathlib import Path

import pytest

from nodegui_packer.target import LINUX_TARGET, TargetConfig


@pytest.fixture(autouse=True)
def _reset_packer_logger():
    # The CLI detaches the logger from the root; tests rely on caplog.
    logger = logging.getLogger("nodegui_packer")
    yield
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def write_manifest(package_dir: Path, dependencies=None, **extra) -> Path:
    package_dir.mkdir(parents=True, exist_ok=True)
    doc = {"name": package_dir.name, "version": "1.0.0", **extra}
    if dependencies is not None:
        doc["dependencies"] = {name: "^1.0.0" for name in dependencies}
    manifest = package_dir / "package.json"
    manifest.write_text(json.dumps(doc), encoding="utf-8")
    return manifest


def install_package(node_modules: Path, name: str, dependencies=None) -> Path:
    package_dir = node_modules / name
    write_manifest(package_dir, dependencies)
    (package_dir / "index.js").write_text(f"module.exports = '{name}';\n", encoding="utf-8")
    return package_dir


def install_runtime(
    node_modules: Path,
    target: TargetConfig = LINUX_TARGET,
    *,
    qt_versions=("6.4.1",),
    plugins=("platforms", "styles", "imageformats"),
) -> None:
    qode_dir = node_modules / "@nodegui" / "qode" / "binaries"
    qode_dir.mkdir(parents=True, exist_ok=True)
    qode = qode_dir / target.runtime_binary
    qode.write_bytes(b"\x7fELF fake qode")
    qode.chmod(0o755)

    nodegui = node_modules / "@nodegui" / "nodegui"
    write_manifest(nodegui)
    (nodegui / "index.js").write_text("module.exports = {};\n", encoding="utf-8")

    lib_ext = ".dll" if target.os_name == "windows" else ".so.6"
    for version in qt_versions:
        toolchain = nodegui / "miniqt" / version / target.qt_toolchain
        lib_dir = toolchain / target.qt_library_dir
        lib_dir.mkdir(parents=True, exist_ok=True)
        (lib_dir / f"Qt6Core{lib_ext}").write_bytes(f"core {version}".encode())
        (lib_dir / f"Qt6Gui{lib_ext}").write_bytes(f"gui {version}".encode())
        (lib_dir / "README.txt").write_text("not a library", encoding="utf-8")
        for plugin in plugins:
            plugin_dir = toolchain / "plugins" / plugin
            plugin_dir.mkdir(parents=True, exist_ok=True)
            (plugin_dir / f"q{plugin}{lib_ext}").write_bytes(plugin.encode())


def make_project(
    root: Path,
    *,
    target: TargetConfig = LINUX_TARGET,
    dependencies=(),
    packages=None,
    entry: str = "main.js",
) -> Path:
    """Create a fake NodeGUI project with an installed runtime.

    ``packages`` maps installed package names to their own dependencies.
    """

    root.mkdir(parents=True, exist_ok=True)
    entry_path = root / entry
    entry_path.parent.mkdir(parents=True, exist_ok=True)
    entry_path.write_text("console.log('hello');\n", encoding="utf-8")
    write_manifest(root, ["@nodegui/nodegui", *dependencies])
    (root / "README.md").write_text("# demo\n", encoding="utf-8")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")

    node_modules = root / "node_modules"
    install_runtime(node_modules, target)
    for name, deps in (packages or {}).items():
        install_package(node_modules, name, deps)
    return root


def fake_compiler(artifacts, app_dir, app_name, target, **kwargs):
    exe = app_dir / f"{app_name}{target.executable_suffix}"
    exe.write_bytes(b"launcher")
    return exe
