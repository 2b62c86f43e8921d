"""
Per-architecture toolchain paths and compile steps for native libraries.

Every enabled target produces two shared libraries: the app library itself
and a tiny placeholder library that ends up next to it inside the APK.
"""
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from apkbuild.config import AppConfig, BuildMode, Config, Target
from apkbuild.errors import ConfigurationError
from apkbuild.graph import CommandNode, run_command

logger = logging.getLogger(__name__)

# System libraries every app library links against.
APP_LIBS = ("GLESv2", "EGL", "android", "log")

PLACEHOLDER_NAME = "source"


@dataclass(frozen=True)
class TargetSpec:
    lib_dir: str  # below <ndk>/platforms/android-<N>
    include_dir: str  # below <ndk>/sysroot/usr/include
    out_dir: str  # ABI directory inside the APK
    triple: str
    cpu: Optional[str] = None


TARGET_SPECS = {
    Target.AARCH64: TargetSpec("arch-arm64/usr/lib", "aarch64-linux-android", "arm64-v8a",
                               "aarch64-linux-android", "baseline+v8a"),
    Target.ARM: TargetSpec("arch-arm/usr/lib", "arm-linux-androideabi", "armeabi",
                           "arm-linux-android", "baseline+v7a"),
    Target.X86: TargetSpec("arch-x86/usr/lib", "i686-linux-android", "x86",
                           "x86-linux-android"),
    Target.X86_64: TargetSpec("x86_64/usr/lib64", "x86_64-linux-android", "x86_64",
                              "x86_64-linux-android"),
}


def so_dir(target: Target) -> str:
    """Directory inside the APK that holds the libraries of target, with a trailing slash."""
    return f"lib/{TARGET_SPECS[target].out_dir}/"


@dataclass(frozen=True)
class CompiledLibrary:
    target: Target
    path: str
    placeholder: bool = False

    @property
    def entry_name(self) -> str:
        return so_dir(self.target) + os.path.basename(self.path)


@dataclass(frozen=True)
class TargetPaths:
    include_dir: str
    arch_include_dir: str
    lib_dir: str
    libc_file: str


def libc_file_path(config: Config, android_version: int, target: Target) -> str:
    return os.path.join(
        config.cache_root,
        "android-libc",
        f"android-{android_version}-{TARGET_SPECS[target].out_dir}.conf",
    )


def resolve_target_paths(config: Config, app: AppConfig, target: Target) -> TargetPaths:
    """
    Resolves the header and library directories of the NDK for one target.
    Raises:
        ConfigurationError: If one of the directories does not exist.
    """
    spec = TARGET_SPECS[target]
    include_dir = os.path.join(config.ndk_root, "sysroot", "usr", "include")
    arch_include_dir = os.path.join(include_dir, spec.include_dir)
    lib_dir = os.path.join(config.ndk_root, "platforms", f"android-{app.android_version}", spec.lib_dir)

    for label, path in (("NDK include directory", include_dir),
                        (f"NDK include directory for {target.value}", arch_include_dir),
                        (f"NDK library directory for {target.value}", lib_dir)):
        if not os.path.isdir(path):
            raise ConfigurationError(f"{label} not found: {path}. Ensure the NDK supports android-{app.android_version}.")

    return TargetPaths(
        include_dir=include_dir,
        arch_include_dir=arch_include_dir,
        lib_dir=lib_dir,
        libc_file=libc_file_path(config, app.android_version, target),
    )


def render_libc_file(include_dir: str, sys_include_dir: str, crt_dir: str) -> str:
    return (
        f"include_dir={include_dir}\n"
        f"sys_include_dir={sys_include_dir}\n"
        f"crt_dir={crt_dir}\n"
        "msvc_lib_dir=\n"
        "kernel32_lib_dir=\n"
    )


def _write_if_changed(path: str, content: str) -> bool:
    if os.path.isfile(path):
        with open(path, "r", encoding="utf-8") as f:
            if f.read() == content:
                return False
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return True


def write_libc_file(path: str, include_dir: str, sys_include_dir: str, crt_dir: str) -> bool:
    """
    Writes the libc description file consumed by the cross compiler.
    The file is shared by every build for the same android version and
    target, so it is left alone when it already has the expected content.
    Returns:
        bool: True if the file was (re)written.
    """
    written = _write_if_changed(path, render_libc_file(include_dir, sys_include_dir, crt_dir))
    if written:
        logger.debug("Wrote libc file %s", path)
    return written


def build_options_file_path(config: Config, app: AppConfig) -> str:
    return os.path.join(config.cache_root, "build_options", app.app_name, "build_options.zig")


def render_build_options(app: AppConfig) -> str:
    return (
        f"pub const android_sdk_version: u16 = {app.android_version};\n"
        f"pub const fullscreen: bool = {'true' if app.fullscreen else 'false'};\n"
    )


def write_build_options(config: Config, app: AppConfig) -> str:
    """Writes the build_options module that the app source imports and returns its path."""
    path = build_options_file_path(config, app)
    if _write_if_changed(path, render_build_options(app)):
        logger.debug("Wrote build options %s", path)
    return path


class CompileNode(CommandNode):
    """Runs the cross compiler for one library and knows where the result lands."""

    def __init__(self, name: str, cmd: List[str], library: CompiledLibrary):
        super().__init__(name, cmd)
        self.library = library

    def make(self) -> None:
        os.makedirs(os.path.dirname(self.library.path), exist_ok=True)
        run_command(self.cmd, cwd=self.cwd)


def _target_args(config: Config, target: Target) -> List[str]:
    spec = TARGET_SPECS[target]
    args = [config.system_tools.zig, "build-lib", "-dynamic", "-target", spec.triple]
    if spec.cpu:
        args += ["-mcpu", spec.cpu]
    return args


def compile_app_library(
    config: Config,
    src_file: str,
    app: AppConfig,
    mode: BuildMode,
    target: Target,
) -> CompileNode:
    """
    Creates the node that compiles lib<app_name>.so for target.
    The libc file for (android version, target) and the build_options
    module read by the app source through @import("build_options") are
    written right away.
    """
    paths = resolve_target_paths(config, app, target)
    write_libc_file(paths.libc_file, paths.include_dir, paths.include_dir, paths.lib_dir)
    build_options = write_build_options(config, app)

    out_path = os.path.join(config.cache_root, "lib", TARGET_SPECS[target].out_dir, f"lib{app.app_name}.so")
    cmd = _target_args(config, target) + [
        "--mod", f"build_options::{build_options}",
        "--deps", "build_options",
        src_file,
        "--name", app.app_name,
        "-O", mode.value,
        "-fPIC",
        "-ffunction-sections",
        "-fcompiler-rt",
    ]
    if mode is BuildMode.RELEASE_SMALL:
        cmd.append("-fstrip")
    cmd += [
        "-DANDROID",
        f"-I{paths.include_dir}",
        f"-I{paths.arch_include_dir}",
        f"-L{paths.lib_dir}",
        "--libc", paths.libc_file,
        "-lc",
    ]
    cmd += [f"-l{lib}" for lib in APP_LIBS]
    cmd.append(f"-femit-bin={out_path}")

    return CompileNode(f"compile {app.app_name} ({target.value})", cmd, CompiledLibrary(target, out_path))


def placeholder_source(config: Config) -> str:
    """Writes the (empty) placeholder source once and returns its path."""
    path = os.path.join(config.cache_root, "placeholder", f"{PLACEHOLDER_NAME}.zig")
    if not os.path.isfile(path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("")
    return path


def compile_placeholder_library(config: Config, target: Target) -> CompileNode:
    """Creates the node that compiles the stripped, empty libsource.so for target."""
    out_path = os.path.join(config.cache_root, "placeholder", TARGET_SPECS[target].out_dir, f"lib{PLACEHOLDER_NAME}.so")
    cmd = _target_args(config, target) + [
        placeholder_source(config),
        "--name", PLACEHOLDER_NAME,
        "-O", BuildMode.RELEASE_SMALL.value,
        "-fstrip",
        "-fno-compiler-rt",
        f"-femit-bin={out_path}",
    ]
    return CompileNode(f"compile placeholder ({target.value})", cmd, CompiledLibrary(target, out_path, placeholder=True))
