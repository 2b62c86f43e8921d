"""
Instantiates the full build pipeline to create an APK file.

    strings.xml + AndroidManifest.xml     (written immediately)
            |
    aapt package  -> unsigned apk          (first node)
            |
    per target: compile lib + placeholder -> inject both into the apk
            |
    jarsigner                              (final node)
"""
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from apkbuild.archive import InjectNode
from apkbuild.config import AppConfig, AppTargetConfig, BuildMode, Config
from apkbuild.errors import ConfigurationError, TransientIOError
from apkbuild.graph import BuildGraph, BuildNode, CommandNode
from apkbuild.resources import write_manifest, write_strings_xml
from apkbuild.targets import CompiledLibrary, compile_app_library, compile_placeholder_library
from apkbuild.tools import sign_apk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    graph: BuildGraph
    first_node: BuildNode
    final_node: BuildNode
    # One app library per enabled target, in target order.
    libraries: List[CompiledLibrary]


def package_command(config: Config, apk_file: str, manifest: str, app: AppConfig) -> List[str]:
    """Command line of aapt that builds the unsigned apk from manifest, resources and assets."""
    cmd = [
        config.tool("aapt"),
        "package",
        "-f",  # force overwrite of existing files
        "-F", apk_file,
        "-I", config.platform_jar(app.android_version),
        "-M", manifest,
        "-S", app.resource_directory,
    ]
    for asset_dir in app.asset_directories:
        cmd += ["-A", asset_dir]
    cmd += ["--target-sdk-version", str(app.android_version)]
    return cmd


def _check_paths(config: Config, app: AppConfig) -> None:
    if config.key_store is None:
        raise ConfigurationError("A key store is required to sign the apk; set Config.key_store")
    platform_jar = config.platform_jar(app.android_version)
    if not os.path.isfile(platform_jar):
        raise ConfigurationError(
            f"Android platform JAR not found: {platform_jar}. Ensure SDK android-{app.android_version} is installed."
        )
    for asset_dir in app.asset_directories:
        if not os.path.isdir(asset_dir):
            raise ConfigurationError(f"Asset directory not found: {asset_dir}")


def create_app(
    config: Config,
    apk_file: str,
    src_file: str,
    app: AppConfig,
    mode: BuildMode = BuildMode.DEBUG,
    targets: AppTargetConfig = AppTargetConfig(),
    graph: Optional[BuildGraph] = None,
) -> PipelineResult:
    """
    Defines every step needed to turn src_file into a signed apk.

    Nothing is compiled here, but strings.xml, AndroidManifest.xml, the
    build_options module and the libc files are written right away. Any
    configuration problem raises before a single node is added, so a graph
    is either complete or absent.
    Args:
        config: Toolchain configuration, must carry a key store.
        apk_file: Where the apk is created.
        src_file: Main source file of the native app library.
        app: Application configuration.
        mode: Optimization mode of the app library.
        targets: Architectures to build for.
        graph: Graph to add the nodes to. A new one is created if omitted.
    Raises:
        ConfigurationError: On missing SDK/NDK paths, a missing key store, or no enabled target.
        TransientIOError: If generated files cannot be written.
    """
    enabled = list(targets.enabled())
    if not enabled:
        raise ConfigurationError("At least one target architecture must be enabled")
    _check_paths(config, app)

    manifest_path = os.path.join(config.cache_root, "manifest", app.app_name, "AndroidManifest.xml")
    compile_nodes = []
    try:
        strings_xml = write_strings_xml(app)
        write_manifest(app, manifest_path)
        for target in enabled:
            compile_nodes.append((
                target,
                compile_app_library(config, src_file, app, mode, target),
                compile_placeholder_library(config, target),
            ))
    except OSError as e:
        raise TransientIOError(f"Could not write generated build files: {e}") from e
    logger.info("Generated %s and %s", strings_xml, manifest_path)

    graph = graph if graph is not None else BuildGraph()

    make_unsigned_apk = graph.add(
        CommandNode("package unsigned apk", package_command(config, apk_file, manifest_path, app))
    )
    sign_step = graph.add(sign_apk(config, apk_file))

    libraries = []
    for target, app_lib, placeholder in compile_nodes:
        libraries.append(app_lib.library)
        injects = []
        for compile_node in (placeholder, app_lib):
            graph.add(compile_node)
            inject = graph.add(
                InjectNode(config, apk_file, compile_node.library.path, compile_node.library.entry_name),
                depends_on=[make_unsigned_apk, compile_node],  # the apk must exist before injecting
            )
            graph.depend(sign_step, inject)
            injects.append(inject)
        # The app library is injected last so it wins should both share an entry name.
        graph.depend(injects[1], injects[0])
        logger.debug("Added %s build for %s", target.value, app.app_name)

    return PipelineResult(graph=graph, first_node=make_unsigned_apk, final_node=sign_step, libraries=libraries)
