"""Command line interface for apkbuild."""
import argparse
import logging
import sys
from typing import List, Optional

from apkbuild.config import BuildMode, Project, load_project, parse_targets
from apkbuild.errors import ApkBuildError, ConfigurationError
from apkbuild.graph import BuildGraph, BuildNode, execute
from apkbuild.pipeline import create_app
from apkbuild.tools import align_apk, compress_apk, init_keystore, install_app, start_app

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    level = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger = logging.getLogger("apkbuild")
    logger.setLevel(level)
    logger.propagate = False

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="apkbuild", description="Build, sign and deploy native Android apps.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Enable verbose logging.")
    parser.add_argument("-q", "--quiet", action="count", default=0,
                        help="Reduce logging. Pass twice to only show errors.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_command(name, help_text):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("project", help="Path to the JSON project file.")
        p.add_argument("-j", "--jobs", type=int, default=1, help="Number of nodes to run in parallel.")
        p.add_argument("--retries", type=int, default=0, help="Retries for transient I/O failures.")
        return p

    p_build = add_command("build", "Build and sign the apk.")
    p_build.add_argument("--apk", required=True, help="Output path of the apk.")
    p_build.add_argument("--src", required=True, help="Main source file of the native library.")
    p_build.add_argument("--mode", choices=[m.value for m in BuildMode], default=BuildMode.DEBUG.value)
    p_build.add_argument("--targets", default=None,
                         help="Comma separated targets (aarch64,arm,x86,x86_64). Defaults to the project file.")
    p_build.add_argument("--align", metavar="OUT", default=None, help="Also zipalign the signed apk into OUT.")
    p_build.add_argument("--compress", metavar="OUT", default=None, help="Also write a recompressed copy to OUT.")
    p_build.add_argument("--install", action="store_true", help="Install the apk on the connected device.")
    p_build.add_argument("--start", action="store_true", help="Start the app after installing it.")

    add_command("keystore", "Create the key store described in the project file.")

    p_install = add_command("install", "Install an apk on the connected device.")
    p_install.add_argument("--apk", required=True)

    add_command("start", "Start the app on the connected device.")

    p_compress = add_command("compress", "Repack an apk with maximum compression.")
    p_compress.add_argument("--apk", required=True)
    p_compress.add_argument("--out", required=True)
    return parser


def _define_build(ns, project: Project, graph: BuildGraph) -> BuildNode:
    targets = project.targets
    if ns.targets:
        targets = parse_targets([t.strip() for t in ns.targets.split(",") if t.strip()])
    result = create_app(
        project.toolchain, ns.apk, ns.src, project.app,
        mode=BuildMode(ns.mode), targets=targets, graph=graph,
    )
    final = result.final_node
    installed_apk = ns.apk
    if ns.align:
        final = graph.add(align_apk(project.toolchain, ns.apk, ns.align), depends_on=[final])
        installed_apk = ns.align
    if ns.compress:
        compress_apk(graph, project.toolchain, installed_apk, ns.compress, after=final)
    if ns.install or ns.start:
        final = graph.add(install_app(project.toolchain, installed_apk), depends_on=[final])
    if ns.start:
        final = graph.add(start_app(project.toolchain, project.app), depends_on=[final])
    return final


def main(argv: Optional[List[str]] = None) -> int:
    ns = _build_parser().parse_args(argv)
    logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)

    graph = BuildGraph()
    try:
        project = load_project(ns.project)
        if ns.command == "build":
            _define_build(ns, project, graph)
        elif ns.command == "keystore":
            graph.add(init_keystore(project.toolchain, project.key))
        elif ns.command == "install":
            graph.add(install_app(project.toolchain, ns.apk))
        elif ns.command == "start":
            graph.add(start_app(project.toolchain, project.app))
        elif ns.command == "compress":
            compress_apk(graph, project.toolchain, ns.apk, ns.out)
        else:
            raise AssertionError(f"Unhandled command: {ns.command}")
        # Runs the whole graph so side chains such as --compress are included.
        report = execute(graph, jobs=ns.jobs, retries=ns.retries)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG
    except ApkBuildError as e:
        logger.error("Error: %s", e)
        return EXIT_FAILED

    if not report.ok:
        failed = report.failed
        logger.error("Build failed at '%s' (%s): %s", failed.node.name, failed.kind, failed.message)
        skipped = [r.node.name for r in report.results if not report.ran(r.node)]
        if skipped:
            logger.error("Skipped %d steps: %s", len(skipped), ", ".join(skipped))
        return EXIT_FAILED
    logger.info("Done: %d steps completed.", len(report.results))
    return EXIT_OK
