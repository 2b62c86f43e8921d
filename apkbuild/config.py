"""
Configuration of the Android toolchain, the application and the targets to build.

All of these are plain immutable records. They are created once by the caller
(or loaded from a JSON project file) and handed to every build step explicitly.
"""
import enum
import json
import os
import re
import sys
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterator, List, Optional, Tuple

from apkbuild.errors import ConfigurationError


class Target(enum.Enum):
    """One of the legal targets android can be built for."""

    AARCH64 = "aarch64"
    ARM = "arm"
    X86 = "x86"
    X86_64 = "x86_64"


class BuildMode(enum.Enum):
    DEBUG = "Debug"
    RELEASE_SAFE = "ReleaseSafe"
    RELEASE_FAST = "ReleaseFast"
    RELEASE_SMALL = "ReleaseSmall"


@dataclass(frozen=True)
class KeyStore:
    file: str
    alias: str
    password: str


@dataclass(frozen=True)
class SystemTools:
    """Binary paths of all tools that are not included in the android SDK."""

    keytool: str = "keytool"
    adb: str = "adb"
    jarsigner: str = "/usr/lib/jvm/java-11-openjdk/bin/jarsigner"
    mkdir: str = "mkdir"
    rm: str = "rm"
    zip: str = "zip"
    unzip: str = "unzip"
    zig: str = "zig"


def _default_zip_add() -> Tuple[str, ...]:
    return (sys.executable, "-m", "apkbuild.zip_add")


@dataclass(frozen=True)
class HostTools:
    """Helper executables that run on the build host.

    zip_add is the command prefix of the archive injection helper. It is
    called as ``<zip_add...> <apk> <source-file> <entry-name>``.
    """

    zip_add: Tuple[str, ...] = field(default_factory=_default_zip_add)


@dataclass(frozen=True)
class Config:
    """Configuration of the Android toolchain."""

    sdk_root: str
    ndk_root: str
    build_tools: str
    key_store: Optional[KeyStore] = None
    system_tools: SystemTools = field(default_factory=SystemTools)
    host_tools: HostTools = field(default_factory=HostTools)
    # Holds generated libc description files and other build intermediates.
    cache_root: str = "apkbuild-cache"

    def tool(self, name: str) -> str:
        """Path of a binary shipped in the build-tools directory (aapt, zipalign)."""
        return os.path.join(self.build_tools, name)

    def platform_jar(self, android_version: int) -> str:
        return os.path.join(self.sdk_root, "platforms", f"android-{android_version}", "android.jar")


class KeyAlgorithm(enum.Enum):
    RSA = "RSA"


@dataclass(frozen=True)
class KeyConfig:
    """Configuration for a signing key."""

    key_algorithm: KeyAlgorithm = KeyAlgorithm.RSA
    key_size: int = 2048  # bits
    validity: int = 10_000  # days
    distinguished_name: str = "CN=example.com, OU=ID, O=Example, L=Doe, S=John, C=GB"


_APP_NAME_RE = re.compile(r"^[a-z_]+$")
_PACKAGE_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*(\.[a-z_][a-z0-9_]*)+$")


@dataclass(frozen=True)
class AppConfig:
    """Configuration of an application."""

    # The display name of the application. This is shown to the users.
    display_name: str
    # Only lower case letters and underscores are allowed.
    app_name: str
    # Java package name, usually the reverse top level domain + app name.
    package_name: str
    # The resource directory that will contain the manifest and other app resources.
    # This should be a distinct directory per app.
    resource_directory: str
    # The android version to build against.
    android_version: int = 29
    # Hides the navigation buttons and the top bar. Usually relevant for games.
    fullscreen: bool = False
    asset_directories: Tuple[str, ...] = ()
    permissions: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.display_name:
            raise ConfigurationError("display_name must not be empty")
        if not _APP_NAME_RE.match(self.app_name):
            raise ConfigurationError(
                f"Invalid app_name {self.app_name!r}: only lower case letters and underscores are allowed"
            )
        if not _PACKAGE_NAME_RE.match(self.package_name):
            raise ConfigurationError(
                f"Invalid package_name {self.package_name!r}: expected dot separated lower case identifiers"
            )
        if self.android_version < 1:
            raise ConfigurationError(f"Invalid android_version {self.android_version!r}")
        # Lists are accepted for convenience but stored as tuples.
        object.__setattr__(self, "asset_directories", tuple(self.asset_directories))
        object.__setattr__(self, "permissions", tuple(self.permissions))


@dataclass(frozen=True)
class AppTargetConfig:
    """The configuration which targets an app should be built for."""

    aarch64: bool = True
    arm: bool = True
    x86_64: bool = True
    x86: bool = False

    def enabled(self) -> Iterator[Target]:
        """Yields the enabled targets in declaration order."""
        for f in fields(self):
            if getattr(self, f.name):
                yield Target(f.name)

    @classmethod
    def only(cls, *targets: Target) -> "AppTargetConfig":
        wanted = {t.value for t in targets}
        return cls(**{f.name: f.name in wanted for f in fields(cls)})


@dataclass(frozen=True)
class Project:
    """Everything a project file describes."""

    toolchain: Config
    app: AppConfig
    targets: AppTargetConfig = field(default_factory=AppTargetConfig)
    key: KeyConfig = field(default_factory=KeyConfig)


def _build(cls, data: Any, section: str, base_dir: str, path_keys: Tuple[str, ...] = ()):
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{section}' must be a JSON object")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown keys in section '{section}': {', '.join(unknown)}")
    kwargs: Dict[str, Any] = dict(data)
    for key in path_keys:
        if key in kwargs and isinstance(kwargs[key], str):
            kwargs[key] = os.path.join(base_dir, os.path.expanduser(kwargs[key]))
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ConfigurationError(f"Invalid section '{section}': {e}") from e


def load_project(path: str) -> Project:
    """
    Loads a JSON project file.
    Relative paths inside the file are resolved against the file's directory.
    Raises:
        ConfigurationError: If the file cannot be read or contains invalid values.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read project file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Project file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Project file {path} must contain a JSON object")
    unknown = sorted(set(data) - {"toolchain", "app", "targets", "key"})
    if unknown:
        raise ConfigurationError(f"Unknown sections in project file: {', '.join(unknown)}")
    for required in ("toolchain", "app"):
        if required not in data:
            raise ConfigurationError(f"Project file {path} has no '{required}' section")

    base_dir = os.path.dirname(os.path.abspath(path))

    toolchain = dict(data["toolchain"]) if isinstance(data["toolchain"], dict) else data["toolchain"]
    if isinstance(toolchain, dict):
        if toolchain.get("key_store") is not None:
            toolchain["key_store"] = _build(KeyStore, toolchain["key_store"], "toolchain.key_store", base_dir, ("file",))
        if "system_tools" in toolchain:
            toolchain["system_tools"] = _build(SystemTools, toolchain["system_tools"], "toolchain.system_tools", base_dir)
        if "host_tools" in toolchain:
            host = toolchain["host_tools"]
            if isinstance(host, dict) and "zip_add" in host:
                host = dict(host, zip_add=tuple(host["zip_add"]))
            toolchain["host_tools"] = _build(HostTools, host, "toolchain.host_tools", base_dir)
    config = _build(Config, toolchain, "toolchain", base_dir, ("sdk_root", "ndk_root", "build_tools", "cache_root"))

    app_data = dict(data["app"]) if isinstance(data["app"], dict) else data["app"]
    if isinstance(app_data, dict) and "asset_directories" in app_data:
        app_data["asset_directories"] = tuple(
            os.path.join(base_dir, d) for d in app_data["asset_directories"]
        )
    app = _build(AppConfig, app_data, "app", base_dir, ("resource_directory",))

    targets = _build(AppTargetConfig, data.get("targets", {}), "targets", base_dir)

    key_data = data.get("key", {})
    if isinstance(key_data, dict) and "key_algorithm" in key_data:
        try:
            key_data = dict(key_data, key_algorithm=KeyAlgorithm(key_data["key_algorithm"]))
        except ValueError as e:
            raise ConfigurationError(f"Unsupported key algorithm {key_data['key_algorithm']!r}") from e
    key = _build(KeyConfig, key_data, "key", base_dir)

    return Project(toolchain=config, app=app, targets=targets, key=key)


def parse_targets(names: List[str]) -> AppTargetConfig:
    """Builds a target selection from names such as ``["aarch64", "x86"]``."""
    selected = []
    for name in names:
        try:
            selected.append(Target(name))
        except ValueError as e:
            raise ConfigurationError(f"Unknown target {name!r}") from e
    return AppTargetConfig.only(*selected)
