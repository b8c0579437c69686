import os
import sys

import pytest

from nodegui_packer.errors import CompileStepFailure, ConfigurationError
from nodegui_packer.launcher import compile_launcher, compiler_command, emit_launcher
from nodegui_packer.target import LINUX_TARGET, WINDOWS_TARGET


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell-script compiler stub")


def test_windows_scripts_use_backslash_entry_and_qt_env(tmp_path):
    artifacts = emit_launcher(tmp_path, "Demo", "src/ui/main.js", WINDOWS_TARGET)

    bat = artifacts.startup_script.read_bytes()
    assert artifacts.startup_script.name == "debug.bat"
    assert b"\r\n" in bat
    text = bat.decode("utf-8")
    assert '"%~dp0qode.exe" "%~dp0src\\ui\\main.js"' in text
    assert 'set "PATH=%~dp0;%PATH%"' in text
    assert 'set "QT_QPA_PLATFORM_PLUGIN_PATH=%~dp0platforms"' in text
    assert "exit /b %EXIT_CODE%" in text

    ps1 = artifacts.hidden_script.read_text(encoding="utf-8")
    assert artifacts.hidden_script.name == "run-hidden.ps1"
    assert "-WindowStyle Hidden" in ps1
    assert "$PSScriptRoot\\src\\ui\\main.js" in ps1


def test_windows_default_launcher_is_csharp(tmp_path):
    artifacts = emit_launcher(tmp_path, "Demo", "src/ui/main.js", WINDOWS_TARGET)

    assert artifacts.language == "csharp"
    assert artifacts.source_path.name == "NodeGuiLauncher.cs"
    source = artifacts.source_path.read_text(encoding="utf-8")
    assert 'const string EntryPath = "src\\\\ui\\\\main.js";' in source
    assert 'const string RuntimeName = "qode.exe";' in source
    assert "CreateNoWindow = true" in source
    assert "MessageBox.Show" in source
    assert "WaitForExit" not in source


def test_windows_c_launcher_resolves_own_directory(tmp_path):
    artifacts = emit_launcher(tmp_path, "Demo", "main.js", WINDOWS_TARGET, language="c")

    source = artifacts.source_path.read_text(encoding="utf-8")
    assert artifacts.source_path.name == "launcher.c"
    assert "GetModuleFileNameA" in source
    assert "GetCurrentDirectory" not in source
    assert "CREATE_NO_WINDOW" in source
    assert "MessageBoxA" in source
    assert '#define ENTRY_PATH "main.js"' in source
    assert "WaitForSingleObject" not in source


def test_linux_scripts_are_executable_and_set_library_path(tmp_path):
    artifacts = emit_launcher(tmp_path, "Demo", "src/ui/main.js", LINUX_TARGET)

    run_sh = artifacts.startup_script.read_text(encoding="utf-8")
    assert artifacts.startup_script.name == "run.sh"
    assert run_sh.startswith("#!/bin/sh\n")
    assert 'export LD_LIBRARY_PATH="$HERE${LD_LIBRARY_PATH:+:$LD_LIBRARY_PATH}"' in run_sh
    assert '"$HERE"/qode "$HERE"/src/ui/main.js' in run_sh
    assert 'exit "$status"' in run_sh

    hidden = artifacts.hidden_script.read_text(encoding="utf-8")
    assert "setsid" in hidden
    assert hidden.rstrip().endswith("fi")
    if sys.platform != "win32":
        assert os.access(artifacts.startup_script, os.X_OK)
        assert os.access(artifacts.hidden_script, os.X_OK)


def test_linux_c_launcher_spawns_without_waiting(tmp_path):
    artifacts = emit_launcher(tmp_path, "Demo", "src/ui/main.js", LINUX_TARGET)

    source = artifacts.source_path.read_text(encoding="utf-8")
    assert artifacts.language == "c"
    assert 'readlink("/proc/self/exe"' in source
    assert "setsid()" in source
    assert 'setenv("LD_LIBRARY_PATH"' in source
    assert '#define ENTRY_PATH "src/ui/main.js"' in source
    assert "zenity" in source


def test_csharp_launcher_rejected_for_linux(tmp_path):
    with pytest.raises(ConfigurationError):
        emit_launcher(tmp_path, "Demo", "main.js", LINUX_TARGET, language="csharp")


def test_unknown_launcher_language(tmp_path):
    with pytest.raises(ConfigurationError):
        emit_launcher(tmp_path, "Demo", "main.js", WINDOWS_TARGET, language="rust")


def test_special_characters_are_escaped(tmp_path):
    artifacts = emit_launcher(tmp_path, 'Tom & "Jerry"', "main.js", WINDOWS_TARGET)

    bat = artifacts.startup_script.read_text(encoding="utf-8")
    assert "echo Starting Tom ^& \"Jerry\"..." in bat
    source = artifacts.source_path.read_text(encoding="utf-8")
    assert 'const string AppName = "Tom & \\"Jerry\\"";' in source


def test_shell_entry_is_quoted(tmp_path):
    artifacts = emit_launcher(tmp_path, "Demo", "my app/main.js", LINUX_TARGET)

    run_sh = artifacts.startup_script.read_text(encoding="utf-8")
    assert "\"$HERE\"/'my app/main.js'" in run_sh


def test_compiler_commands():
    csc = compiler_command("csc.exe", language="csharp", target=WINDOWS_TARGET, source_name="L.cs", exe_name="A.exe")
    gcc = compiler_command("gcc", language="c", target=WINDOWS_TARGET, source_name="l.c", exe_name="A.exe")
    cc = compiler_command("cc", language="c", target=LINUX_TARGET, source_name="l.c", exe_name="A")

    assert csc == ["csc.exe", "/nologo", "/target:winexe", "/out:A.exe", "/reference:System.Windows.Forms.dll", "L.cs"]
    assert "-mwindows" in gcc
    assert cc == ["cc", "-O2", "-o", "A", "l.c"]


def test_compile_without_compiler_fails(tmp_path):
    artifacts = emit_launcher(tmp_path, "Demo", "main.js", LINUX_TARGET)

    with pytest.raises(CompileStepFailure):
        compile_launcher(artifacts, tmp_path, "Demo", LINUX_TARGET, compiler=str(tmp_path / "no-such-cc"))
    assert artifacts.source_path.is_file()


def write_stub_compiler(path, *, exit_code=0):
    path.write_text(
        "#!/bin/sh\n"
        'while [ "$#" -gt 0 ]; do\n'
        '  if [ "$1" = "-o" ]; then shift; printf launcher > "$1"; fi\n'
        "  shift\n"
        "done\n"
        f"exit {exit_code}\n",
        encoding="utf-8",
    )
    path.chmod(0o755)
    return path


@posix_only
def test_compile_with_stub_compiler_removes_source(tmp_path):
    app = tmp_path / "app"
    app.mkdir()
    stub = write_stub_compiler(tmp_path / "cc-stub")
    artifacts = emit_launcher(app, "Demo", "main.js", LINUX_TARGET)

    exe = compile_launcher(artifacts, app, "Demo", LINUX_TARGET, compiler=str(stub))

    assert exe == app / "Demo"
    assert exe.read_text(encoding="utf-8") == "launcher"
    assert not artifacts.source_path.exists()


@posix_only
def test_compile_keep_source(tmp_path):
    app = tmp_path / "app"
    app.mkdir()
    stub = write_stub_compiler(tmp_path / "cc-stub")
    artifacts = emit_launcher(app, "Demo", "main.js", LINUX_TARGET)

    compile_launcher(artifacts, app, "Demo", LINUX_TARGET, compiler=str(stub), keep_source=True)

    assert artifacts.source_path.is_file()


@posix_only
def test_compile_nonzero_exit_is_a_compile_failure(tmp_path):
    app = tmp_path / "app"
    app.mkdir()
    stub = write_stub_compiler(tmp_path / "cc-stub", exit_code=3)
    artifacts = emit_launcher(app, "Demo", "main.js", LINUX_TARGET)

    with pytest.raises(CompileStepFailure, match="exit=3"):
        compile_launcher(artifacts, app, "Demo", LINUX_TARGET, compiler=str(stub))
