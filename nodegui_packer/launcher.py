"""Launcher generation.

This module writes everything needed to start a packaged application:

- a console startup script and a "run hidden" script for the target OS;
- the source of a tiny native bootstrap program (C# or C) that resolves its
  own directory, sets the Qt environment and spawns qode without waiting.

Compiling the bootstrap is delegated to an external compiler through
:func:`compile_launcher`; the generated files are usable on their own.
"""

from dataclasses import dataclass
import logging
import os
import pathlib
import shlex
import shutil
import subprocess
import textwrap

from nodegui_packer.errors import CompileStepFailure, ConfigurationError
from nodegui_packer.target import TargetConfig


CSHARP_SOURCE_NAME: str = "NodeGuiLauncher.cs"
C_SOURCE_NAME: str = "launcher.c"
LAUNCHER_LANGUAGES: tuple[str, ...] = ("csharp", "c")


@dataclass(frozen=True, slots=True)
class LauncherArtifacts:
    """Files written by :func:`emit_launcher`.

    :ivar startup_script: Console startup script.
    :ivar hidden_script: Script that starts the app without a console.
    :ivar source_path: Native bootstrap source.
    :ivar language: Bootstrap language (``csharp`` or ``c``).
    """

    startup_script: pathlib.Path
    hidden_script: pathlib.Path
    source_path: pathlib.Path
    language: str


def emit_launcher(
    app_dir: pathlib.Path,
    app_name: str,
    entry_relpath: str,
    target: TargetConfig,
    *,
    language: str | None = None,
    logger: logging.Logger | None = None,
) -> LauncherArtifacts:
    """Write startup scripts and bootstrap source into ``app_dir``.

    :param app_dir: Application output directory.
    :param app_name: Application name (used in messages and the exe name).
    :param entry_relpath: Entry file relative to ``app_dir`` (POSIX form).
    :param target: Packaging target.
    :param language: Bootstrap language; defaults to the target's.
    :param logger: Optional logger.
    :returns: Paths of the generated files.
    :raises ConfigurationError: If the language is not supported for the target.
    """

    if logger is None:
        logger = logging.getLogger("nodegui_packer")

    lang: str = language if language is not None else target.launcher_language
    if lang not in LAUNCHER_LANGUAGES:
        raise ConfigurationError(f"Unknown launcher language {lang!r}; expected one of {LAUNCHER_LANGUAGES}.")
    if lang == "csharp" and target.os_name != "windows":
        raise ConfigurationError("The C# launcher is only available for Windows targets.")

    entry_native: str = entry_relpath.replace("/", target.path_separator)
    startup_path: pathlib.Path = app_dir / target.startup_script
    hidden_path: pathlib.Path = app_dir / target.hidden_script

    logger.info("nodegui-packer: creating startup scripts")
    if target.os_name == "windows":
        startup_path.write_text(
            _render_batch_script(app_name=app_name, entry=entry_native, target=target),
            encoding="utf-8",
            newline="\r\n",
        )
        hidden_path.write_text(
            _render_powershell_script(entry=entry_native, target=target),
            encoding="utf-8",
            newline="\r\n",
        )
    else:
        startup_path.write_text(
            _render_shell_script(app_name=app_name, entry=entry_relpath, target=target),
            encoding="utf-8",
        )
        hidden_path.write_text(
            _render_hidden_shell_script(entry=entry_relpath, target=target),
            encoding="utf-8",
        )
        for p in (startup_path, hidden_path):
            p.chmod(p.stat().st_mode | 0o111)

    source_path: pathlib.Path
    if lang == "csharp":
        logger.info("nodegui-packer: creating C# launcher")
        source_path = app_dir / CSHARP_SOURCE_NAME
        source_text: str = _render_csharp_source(app_name=app_name, entry=entry_native, target=target)
    elif target.os_name == "windows":
        logger.info("nodegui-packer: creating C launcher")
        source_path = app_dir / C_SOURCE_NAME
        source_text = _render_template(
            _WINDOWS_C_TEMPLATE, app_name=app_name, entry=entry_native, target=target
        )
    else:
        logger.info("nodegui-packer: creating C launcher")
        source_path = app_dir / C_SOURCE_NAME
        source_text = _render_template(
            _POSIX_C_TEMPLATE, app_name=app_name, entry=entry_relpath, target=target
        )
    source_path.write_text(source_text, encoding="utf-8")

    return LauncherArtifacts(
        startup_script=startup_path,
        hidden_script=hidden_path,
        source_path=source_path,
        language=lang,
    )


def compile_launcher(
    artifacts: LauncherArtifacts,
    app_dir: pathlib.Path,
    app_name: str,
    target: TargetConfig,
    *,
    compiler: str | None = None,
    keep_source: bool = False,
    logger: logging.Logger | None = None,
) -> pathlib.Path:
    """Compile the bootstrap source into ``app_dir/<app_name><exe suffix>``.

    :param artifacts: Output of :func:`emit_launcher`.
    :param app_dir: Application output directory (compiler working directory).
    :param app_name: Application name.
    :param target: Packaging target.
    :param compiler: Optional explicit compiler executable.
    :param keep_source: Keep the bootstrap source after a successful compile.
    :param logger: Optional logger.
    :returns: Path to the compiled executable.
    :raises CompileStepFailure: If no compiler is found or compilation fails.
    """

    if logger is None:
        logger = logging.getLogger("nodegui_packer")

    compiler_path: str | None = find_compiler(artifacts.language, target, explicit=compiler)
    if compiler_path is None:
        raise CompileStepFailure(f"No compiler found for the {artifacts.language} launcher.")

    exe_name: str = f"{app_name}{target.executable_suffix}"
    cmd: list[str] = compiler_command(
        compiler_path,
        language=artifacts.language,
        target=target,
        source_name=artifacts.source_path.name,
        exe_name=exe_name,
    )
    logger.info(f"nodegui-packer: compiling launcher: {' '.join(cmd)}")

    try:
        proc = subprocess.run(cmd, cwd=app_dir, check=False)
    except OSError as e:
        raise CompileStepFailure(f"Could not run compiler {compiler_path!r}: {e}") from e
    if proc.returncode != 0:
        raise CompileStepFailure(f"Launcher compilation failed (exit={proc.returncode}): {' '.join(cmd)}")

    exe_path: pathlib.Path = app_dir / exe_name
    if exe_path.is_file() is False:
        raise CompileStepFailure(f"Compiler reported success but {exe_path} was not produced.")

    if keep_source is False:
        artifacts.source_path.unlink()
    return exe_path


def find_compiler(language: str, target: TargetConfig, *, explicit: str | None = None) -> str | None:
    """Locate a compiler for the bootstrap source.

    :param language: ``csharp`` or ``c``.
    :param target: Packaging target.
    :param explicit: Explicit compiler path or command name.
    :returns: Compiler path, or ``None`` if nothing usable was found.
    """

    if explicit is not None:
        return shutil.which(explicit) or (explicit if pathlib.Path(explicit).is_file() else None)

    if language == "csharp":
        found: str | None = shutil.which("csc")
        if found is not None:
            return found
        windir: str = os.environ.get("WINDIR", r"C:\Windows")
        for framework in ("Framework64", "Framework"):
            candidate: pathlib.Path = pathlib.Path(windir) / "Microsoft.NET" / framework / "v4.0.30319" / "csc.exe"
            if candidate.is_file() is True:
                return str(candidate)
        return None

    names: tuple[str, ...]
    if target.os_name == "windows":
        names = ("gcc", "x86_64-w64-mingw32-gcc")
    else:
        names = ("cc", "gcc", "clang")
    for name in names:
        found = shutil.which(name)
        if found is not None:
            return found
    return None


def compiler_command(
    compiler_path: str,
    *,
    language: str,
    target: TargetConfig,
    source_name: str,
    exe_name: str,
) -> list[str]:
    """Build the compiler command line.

    :param compiler_path: Compiler executable.
    :param language: ``csharp`` or ``c``.
    :param target: Packaging target.
    :param source_name: Source file name (relative to the working directory).
    :param exe_name: Output executable name.
    :returns: Argument list.
    """

    if language == "csharp":
        return [
            compiler_path,
            "/nologo",
            "/target:winexe",
            f"/out:{exe_name}",
            "/reference:System.Windows.Forms.dll",
            source_name,
        ]
    if target.os_name == "windows":
        return [compiler_path, "-O2", "-mwindows", "-o", exe_name, source_name]
    return [compiler_path, "-O2", "-o", exe_name, source_name]


def _c_string(value: str) -> str:
    """Render a C/C# string literal (including quotes).

    :param value: Raw text.
    :returns: Escaped literal.
    """

    escaped: str = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _batch_escape(value: str) -> str:
    """Escape text for an unquoted ``echo`` in a batch file.

    :param value: Raw text.
    :returns: Escaped text.
    """

    out: str = value.replace("%", "%%")
    for ch in ("^", "&", "|", "<", ">"):
        out = out.replace(ch, f"^{ch}")
    return out


def _powershell_escape(value: str) -> str:
    """Escape text for a double-quoted PowerShell string.

    :param value: Raw text.
    :returns: Escaped text.
    """

    return value.replace("`", "``").replace("$", "`$").replace('"', '`"')


def _render_template(template: str, *, app_name: str, entry: str, target: TargetConfig) -> str:
    """Fill the placeholders shared by the native bootstrap templates.

    :param template: Template text.
    :param app_name: Application name.
    :param entry: Entry path in target form.
    :param target: Packaging target.
    :returns: Rendered source.
    """

    out: str = template
    out = out.replace("__NGP_APP_NAME__", _c_string(app_name))
    out = out.replace("__NGP_RUNTIME__", _c_string(target.runtime_binary))
    out = out.replace("__NGP_ENTRY__", _c_string(entry))
    return out


def _render_csharp_source(*, app_name: str, entry: str, target: TargetConfig) -> str:
    return _render_template(_CSHARP_TEMPLATE, app_name=app_name, entry=entry, target=target)


def _render_batch_script(*, app_name: str, entry: str, target: TargetConfig) -> str:
    out: str = _BATCH_TEMPLATE
    out = out.replace("__NGP_APP_ECHO__", _batch_escape(app_name))
    out = out.replace("__NGP_RUNTIME__", target.runtime_binary)
    out = out.replace("__NGP_ENTRY__", entry.replace("%", "%%"))
    return out


def _render_powershell_script(*, entry: str, target: TargetConfig) -> str:
    out: str = _POWERSHELL_TEMPLATE
    out = out.replace("__NGP_RUNTIME__", _powershell_escape(target.runtime_binary))
    out = out.replace("__NGP_ENTRY__", _powershell_escape(entry))
    return out


def _render_shell_script(*, app_name: str, entry: str, target: TargetConfig) -> str:
    out: str = _SHELL_TEMPLATE
    out = out.replace("__NGP_APP_ECHO__", shlex.quote(f"Starting {app_name}..."))
    out = out.replace("__NGP_LIB_VAR__", target.library_path_var)
    out = out.replace("__NGP_RUNTIME__", shlex.quote(target.runtime_binary))
    out = out.replace("__NGP_ENTRY__", shlex.quote(entry))
    return out


def _render_hidden_shell_script(*, entry: str, target: TargetConfig) -> str:
    out: str = _HIDDEN_SHELL_TEMPLATE
    out = out.replace("__NGP_LIB_VAR__", target.library_path_var)
    out = out.replace("__NGP_RUNTIME__", shlex.quote(target.runtime_binary))
    out = out.replace("__NGP_ENTRY__", shlex.quote(entry))
    return out


_BATCH_TEMPLATE: str = textwrap.dedent(
    r"""
    @echo off
    cd /d "%~dp0"
    echo Starting __NGP_APP_ECHO__...

    REM Set Qt environment variables
    set "PATH=%~dp0;%PATH%"
    set "QT_PLUGIN_PATH=%~dp0"
    set "QT_QPA_PLATFORM_PLUGIN_PATH=%~dp0platforms"

    REM Execute application with qode
    "%~dp0__NGP_RUNTIME__" "%~dp0__NGP_ENTRY__"
    set EXIT_CODE=%errorlevel%

    if %EXIT_CODE% neq 0 (
      echo Application exited with error code %EXIT_CODE%
      pause
    )
    exit /b %EXIT_CODE%
    """
).lstrip("\n")


_POWERSHELL_TEMPLATE: str = textwrap.dedent(
    r"""
    $env:PATH = "$PSScriptRoot;$env:PATH"
    $env:QT_PLUGIN_PATH = "$PSScriptRoot"
    $env:QT_QPA_PLATFORM_PLUGIN_PATH = "$PSScriptRoot\platforms"
    Start-Process -FilePath "$PSScriptRoot\__NGP_RUNTIME__" -ArgumentList "`"$PSScriptRoot\__NGP_ENTRY__`"" -WorkingDirectory "$PSScriptRoot" -WindowStyle Hidden
    """
).lstrip("\n")


_SHELL_TEMPLATE: str = textwrap.dedent(
    r"""
    #!/bin/sh
    HERE="$(cd "$(dirname "$0")" && pwd)"
    cd "$HERE" || exit 1
    echo __NGP_APP_ECHO__

    # Set Qt environment variables
    export __NGP_LIB_VAR__="$HERE${__NGP_LIB_VAR__:+:$__NGP_LIB_VAR__}"
    export QT_PLUGIN_PATH="$HERE"
    export QT_QPA_PLATFORM_PLUGIN_PATH="$HERE/platforms"

    "$HERE"/__NGP_RUNTIME__ "$HERE"/__NGP_ENTRY__
    status=$?
    if [ "$status" -ne 0 ]; then
      echo "Application exited with error code $status"
    fi
    exit "$status"
    """
).lstrip("\n")


_HIDDEN_SHELL_TEMPLATE: str = textwrap.dedent(
    r"""
    #!/bin/sh
    HERE="$(cd "$(dirname "$0")" && pwd)"
    cd "$HERE" || exit 1

    export __NGP_LIB_VAR__="$HERE${__NGP_LIB_VAR__:+:$__NGP_LIB_VAR__}"
    export QT_PLUGIN_PATH="$HERE"
    export QT_QPA_PLATFORM_PLUGIN_PATH="$HERE/platforms"

    if command -v setsid >/dev/null 2>&1; then
      setsid "$HERE"/__NGP_RUNTIME__ "$HERE"/__NGP_ENTRY__ </dev/null >/dev/null 2>&1 &
    else
      nohup "$HERE"/__NGP_RUNTIME__ "$HERE"/__NGP_ENTRY__ </dev/null >/dev/null 2>&1 &
    fi
    """
).lstrip("\n")


_CSHARP_TEMPLATE: str = textwrap.dedent(
    r"""
    // This file was generated by nodegui-packer.
    using System;
    using System.Diagnostics;
    using System.IO;
    using System.Windows.Forms;

    class NodeGuiLauncher
    {
        const string AppName = __NGP_APP_NAME__;
        const string RuntimeName = __NGP_RUNTIME__;
        const string EntryPath = __NGP_ENTRY__;

        static void Main()
        {
            try
            {
                string currentDir = AppDomain.CurrentDomain.BaseDirectory;
                string runtimePath = Path.Combine(currentDir, RuntimeName);
                string entryPath = Path.Combine(currentDir, EntryPath);

                if (!File.Exists(runtimePath))
                {
                    MessageBox.Show("Cannot find " + RuntimeName, AppName + " Error", MessageBoxButtons.OK, MessageBoxIcon.Error);
                    return;
                }

                if (!File.Exists(entryPath))
                {
                    MessageBox.Show("Cannot find " + EntryPath, AppName + " Error", MessageBoxButtons.OK, MessageBoxIcon.Error);
                    return;
                }

                ProcessStartInfo startInfo = new ProcessStartInfo
                {
                    FileName = runtimePath,
                    Arguments = "\"" + entryPath + "\"",
                    UseShellExecute = false,
                    CreateNoWindow = true,
                    WorkingDirectory = currentDir
                };

                startInfo.EnvironmentVariables["PATH"] = currentDir + ";" + Environment.GetEnvironmentVariable("PATH");
                startInfo.EnvironmentVariables["QT_PLUGIN_PATH"] = currentDir;
                startInfo.EnvironmentVariables["QT_QPA_PLATFORM_PLUGIN_PATH"] = Path.Combine(currentDir, "platforms");

                Process proc = new Process { StartInfo = startInfo };
                proc.Start();
            }
            catch (Exception ex)
            {
                MessageBox.Show("Error: " + ex.Message, AppName + " Error", MessageBoxButtons.OK, MessageBoxIcon.Error);
            }
        }
    }
    """
).lstrip("\n")


_WINDOWS_C_TEMPLATE: str = textwrap.dedent(
    r"""
    /* This file was generated by nodegui-packer. */
    #include <stdio.h>
    #include <string.h>
    #include <windows.h>

    #define APP_NAME __NGP_APP_NAME__
    #define RUNTIME_NAME __NGP_RUNTIME__
    #define ENTRY_PATH __NGP_ENTRY__
    #define ENV_MAX 32767

    static char oldPath[ENV_MAX];
    static char newPath[ENV_MAX];

    static int fail(const char *message) {
        MessageBoxA(NULL, message, APP_NAME " Error", MB_OK | MB_ICONERROR);
        return 1;
    }

    int WINAPI WinMain(HINSTANCE hInstance, HINSTANCE hPrevInstance, LPSTR lpCmdLine, int nCmdShow) {
        char appDir[MAX_PATH];
        char runtimePath[MAX_PATH];
        char entryPath[MAX_PATH];
        char pluginPath[MAX_PATH];
        char cmdLine[MAX_PATH * 2 + 8];
        char message[MAX_PATH + 64];
        char *lastSep;
        DWORD len;
        STARTUPINFOA si;
        PROCESS_INFORMATION pi;

        len = GetModuleFileNameA(NULL, appDir, MAX_PATH);
        if (len == 0 || len >= MAX_PATH) {
            return fail("Cannot resolve the launcher directory");
        }
        lastSep = strrchr(appDir, '\\');
        if (lastSep != NULL) {
            *lastSep = '\0';
        }

        snprintf(runtimePath, sizeof(runtimePath), "%s\\%s", appDir, RUNTIME_NAME);
        snprintf(entryPath, sizeof(entryPath), "%s\\%s", appDir, ENTRY_PATH);
        snprintf(pluginPath, sizeof(pluginPath), "%s\\platforms", appDir);

        if (GetFileAttributesA(runtimePath) == INVALID_FILE_ATTRIBUTES) {
            snprintf(message, sizeof(message), "Cannot find %s", RUNTIME_NAME);
            return fail(message);
        }
        if (GetFileAttributesA(entryPath) == INVALID_FILE_ATTRIBUTES) {
            snprintf(message, sizeof(message), "Cannot find %s", ENTRY_PATH);
            return fail(message);
        }

        if (GetEnvironmentVariableA("PATH", oldPath, ENV_MAX) == 0) {
            oldPath[0] = '\0';
        }
        snprintf(newPath, sizeof(newPath), "%s;%s", appDir, oldPath);
        SetEnvironmentVariableA("PATH", newPath);
        SetEnvironmentVariableA("QT_PLUGIN_PATH", appDir);
        SetEnvironmentVariableA("QT_QPA_PLATFORM_PLUGIN_PATH", pluginPath);

        snprintf(cmdLine, sizeof(cmdLine), "\"%s\" \"%s\"", runtimePath, entryPath);

        ZeroMemory(&si, sizeof(si));
        si.cb = sizeof(si);
        si.dwFlags = STARTF_USESHOWWINDOW;
        si.wShowWindow = SW_HIDE;
        ZeroMemory(&pi, sizeof(pi));

        if (!CreateProcessA(runtimePath, cmdLine, NULL, NULL, FALSE, CREATE_NO_WINDOW, NULL, appDir, &si, &pi)) {
            snprintf(message, sizeof(message), "Failed to start application: error code %lu", GetLastError());
            return fail(message);
        }

        CloseHandle(pi.hProcess);
        CloseHandle(pi.hThread);
        return 0;
    }
    """
).lstrip("\n")


_POSIX_C_TEMPLATE: str = textwrap.dedent(
    r"""
    /* This file was generated by nodegui-packer. */
    #define _GNU_SOURCE
    #include <errno.h>
    #include <fcntl.h>
    #include <limits.h>
    #include <stdio.h>
    #include <stdlib.h>
    #include <string.h>
    #include <sys/types.h>
    #include <sys/wait.h>
    #include <unistd.h>

    #define APP_NAME __NGP_APP_NAME__
    #define RUNTIME_NAME __NGP_RUNTIME__
    #define ENTRY_PATH __NGP_ENTRY__

    static int fail(const char *message) {
        pid_t pid;

        fprintf(stderr, "%s: %s\n", APP_NAME, message);
        pid = fork();
        if (pid == 0) {
            int devnull = open("/dev/null", O_WRONLY);
            if (devnull >= 0) {
                dup2(devnull, STDOUT_FILENO);
                dup2(devnull, STDERR_FILENO);
            }
            execlp("zenity", "zenity", "--error", "--title", APP_NAME " Error", "--text", message, (char *)NULL);
            _exit(127);
        }
        if (pid > 0) {
            waitpid(pid, NULL, 0);
        }
        return 1;
    }

    int main(void) {
        char appDir[PATH_MAX];
        char runtimePath[PATH_MAX];
        char entryPath[PATH_MAX];
        char pluginPath[PATH_MAX];
        char message[PATH_MAX + 64];
        const char *oldLibPath;
        char *libPath;
        char *lastSep;
        size_t libLen;
        ssize_t len;
        int errPipe[2];
        int childErr = 0;
        pid_t pid;

        len = readlink("/proc/self/exe", appDir, sizeof(appDir) - 1);
        if (len <= 0) {
            return fail("Cannot resolve the launcher directory");
        }
        appDir[len] = '\0';
        lastSep = strrchr(appDir, '/');
        if (lastSep != NULL) {
            *lastSep = '\0';
        }

        snprintf(runtimePath, sizeof(runtimePath), "%s/%s", appDir, RUNTIME_NAME);
        snprintf(entryPath, sizeof(entryPath), "%s/%s", appDir, ENTRY_PATH);
        snprintf(pluginPath, sizeof(pluginPath), "%s/platforms", appDir);

        if (access(runtimePath, X_OK) != 0) {
            snprintf(message, sizeof(message), "Cannot find %s", RUNTIME_NAME);
            return fail(message);
        }
        if (access(entryPath, R_OK) != 0) {
            snprintf(message, sizeof(message), "Cannot find %s", ENTRY_PATH);
            return fail(message);
        }

        oldLibPath = getenv("LD_LIBRARY_PATH");
        if (oldLibPath != NULL && oldLibPath[0] != '\0') {
            libLen = strlen(appDir) + strlen(oldLibPath) + 2;
            libPath = malloc(libLen);
            if (libPath == NULL) {
                return fail("Out of memory");
            }
            snprintf(libPath, libLen, "%s:%s", appDir, oldLibPath);
            setenv("LD_LIBRARY_PATH", libPath, 1);
            free(libPath);
        } else {
            setenv("LD_LIBRARY_PATH", appDir, 1);
        }
        setenv("QT_PLUGIN_PATH", appDir, 1);
        setenv("QT_QPA_PLATFORM_PLUGIN_PATH", pluginPath, 1);

        /* The pipe closes on a successful exec; otherwise the child reports errno. */
        if (pipe2(errPipe, O_CLOEXEC) != 0) {
            snprintf(message, sizeof(message), "Failed to start application: %s", strerror(errno));
            return fail(message);
        }

        pid = fork();
        if (pid < 0) {
            snprintf(message, sizeof(message), "Failed to start application: %s", strerror(errno));
            return fail(message);
        }
        if (pid == 0) {
            int devnull;
            close(errPipe[0]);
            setsid();
            if (chdir(appDir) == 0) {
                devnull = open("/dev/null", O_RDWR);
                if (devnull >= 0) {
                    dup2(devnull, STDIN_FILENO);
                    dup2(devnull, STDOUT_FILENO);
                    dup2(devnull, STDERR_FILENO);
                }
                execl(runtimePath, runtimePath, entryPath, (char *)NULL);
            }
            childErr = errno;
            if (write(errPipe[1], &childErr, sizeof(childErr)) < 0) {
                _exit(127);
            }
            _exit(127);
        }

        close(errPipe[1]);
        if (read(errPipe[0], &childErr, sizeof(childErr)) == (ssize_t)sizeof(childErr)) {
            close(errPipe[0]);
            snprintf(message, sizeof(message), "Failed to start application: %s", strerror(childErr));
            return fail(message);
        }
        close(errPipe[0]);
        return 0;
    }
    """
).lstrip("\n")
