"""apkbuild.

Build pipeline that packages cross-compiled native libraries into a signed
Android apk using the SDK's aapt, jarsigner, zipalign and adb.
"""
from apkbuild.config import (
    AppConfig,
    AppTargetConfig,
    BuildMode,
    Config,
    HostTools,
    KeyConfig,
    KeyStore,
    SystemTools,
    Target,
)
from apkbuild.errors import (
    ApkBuildError,
    ArchiveError,
    CommandFailedError,
    ConfigurationError,
    ToolchainError,
    TransientIOError,
)
from apkbuild.graph import BuildGraph, BuildNode, ExecutionReport, NodeResult, NodeStatus, execute
from apkbuild.pipeline import PipelineResult, create_app

__version__ = "0.1.0"
