import itertools
import os
import zipfile
from dataclasses import replace

import pytest

from apkbuild.archive import InjectNode
from apkbuild.config import AppTargetConfig, BuildMode, HostTools, Target
from apkbuild.errors import ConfigurationError
from apkbuild.graph import NodeStatus, execute
from apkbuild.pipeline import create_app, package_command
from apkbuild.targets import CompileNode

from conftest import read_calls

ALL_TARGETS = list(Target)


def inject_nodes(result):
    return [n for n in result.graph.nodes if isinstance(n, InjectNode)]


def compile_nodes(result):
    return [n for n in result.graph.nodes if isinstance(n, CompileNode)]


@pytest.mark.parametrize("selection", [
    combo for r in range(1, len(ALL_TARGETS) + 1) for combo in itertools.combinations(ALL_TARGETS, r)
])
def test_graph_shape_for_every_target_subset(toolchain, app, src_file, tmp_path, selection):
    result = create_app(toolchain, str(tmp_path / "app.apk"), src_file, app, targets=AppTargetConfig.only(*selection))
    graph = result.graph

    assert graph.is_acyclic()
    assert len(result.libraries) == len(selection)
    assert {lib.target for lib in result.libraries} == set(selection)
    assert all(not lib.placeholder for lib in result.libraries)

    injects = inject_nodes(result)
    assert len(injects) == 2 * len(selection)
    compiles = {n.library.path: n for n in compile_nodes(result)}
    for inject in injects:
        assert graph.depends_on(inject, result.first_node)
        assert graph.depends_on(inject, compiles[inject.source])
        assert graph.depends_on(result.final_node, inject)

    assert graph.dependencies(result.first_node) == []


def test_aarch64_only(toolchain, app, src_file, tmp_path):
    result = create_app(toolchain, str(tmp_path / "app.apk"), src_file, app,
                        targets=AppTargetConfig.only(Target.AARCH64))
    assert len(result.libraries) == 1
    injects = inject_nodes(result)
    assert sorted(n.entry_name for n in injects) == ["lib/arm64-v8a/libdemo.so", "lib/arm64-v8a/libsource.so"]
    assert set(result.graph.dependencies(result.final_node)) == set(injects)


def test_generated_files_are_written_at_definition_time(toolchain, app, src_file, tmp_path):
    create_app(toolchain, str(tmp_path / "app.apk"), src_file, app)
    assert (tmp_path / "res" / "values" / "strings.xml").is_file()
    assert os.path.isfile(os.path.join(toolchain.cache_root, "manifest", "demo", "AndroidManifest.xml"))
    assert not (tmp_path / "app.apk").exists()
    assert read_calls(tmp_path / "bin") == []


def test_package_command(toolchain, app, tmp_path):
    assets = [str(tmp_path / "a1"), str(tmp_path / "a2")]
    app = replace(app, asset_directories=assets)
    cmd = package_command(toolchain, "out.apk", "manifest.xml", app)
    assert cmd == [
        os.path.join(toolchain.build_tools, "aapt"), "package", "-f",
        "-F", "out.apk",
        "-I", os.path.join(toolchain.sdk_root, "platforms", "android-29", "android.jar"),
        "-M", "manifest.xml",
        "-S", app.resource_directory,
        "-A", assets[0],
        "-A", assets[1],
        "--target-sdk-version", "29",
    ]


def test_requires_key_store(toolchain, app, src_file, tmp_path):
    with pytest.raises(ConfigurationError, match="key store"):
        create_app(replace(toolchain, key_store=None), str(tmp_path / "app.apk"), src_file, app)


def test_requires_platform_jar(toolchain, app, src_file, tmp_path):
    os.remove(toolchain.platform_jar(29))
    with pytest.raises(ConfigurationError, match="platform JAR"):
        create_app(toolchain, str(tmp_path / "app.apk"), src_file, app)


def test_requires_a_target(toolchain, app, src_file, tmp_path):
    with pytest.raises(ConfigurationError):
        create_app(toolchain, str(tmp_path / "app.apk"), src_file, app, targets=AppTargetConfig.only())


def test_missing_asset_directory(toolchain, app, src_file, tmp_path):
    app = replace(app, asset_directories=[str(tmp_path / "nope")])
    with pytest.raises(ConfigurationError, match="Asset directory"):
        create_app(toolchain, str(tmp_path / "app.apk"), src_file, app)


@pytest.mark.parametrize("jobs", [1, 4])
def test_full_build_produces_populated_signed_apk(toolchain, app, src_file, tmp_path, jobs):
    apk = tmp_path / "app.apk"
    result = create_app(toolchain, str(apk), src_file, app, mode=BuildMode.RELEASE_SMALL,
                        targets=AppTargetConfig(aarch64=True, arm=False, x86_64=True, x86=False))
    report = execute(result.graph, result.final_node, jobs=jobs)
    assert report.ok, report.failed and report.failed.message

    with zipfile.ZipFile(apk) as zf:
        names = set(zf.namelist())
    assert names == {
        "AndroidManifest.xml",
        "lib/arm64-v8a/libdemo.so",
        "lib/arm64-v8a/libsource.so",
        "lib/x86_64/libdemo.so",
        "lib/x86_64/libsource.so",
    }
    calls = read_calls(tmp_path / "bin")
    assert any(call.startswith("aapt package") for call in calls)
    assert calls[-1].startswith("jarsigner")


def test_failing_injection_stops_before_signing(toolchain, app, src_file, tmp_path, bin_dir):
    config = replace(toolchain, host_tools=HostTools(zip_add=(str(bin_dir / "failing"),)))
    result = create_app(config, str(tmp_path / "app.apk"), src_file, app,
                        targets=AppTargetConfig.only(Target.AARCH64))
    report = execute(result.graph, result.final_node)

    assert not report.ok
    assert isinstance(report.failed.node, InjectNode)
    assert report.failed.kind == "command"
    assert report.result_for(result.final_node).status is NodeStatus.SKIPPED
    assert not any(call.startswith("jarsigner") for call in read_calls(bin_dir))


def test_app_library_named_like_the_placeholder_wins(toolchain, app, src_file, tmp_path):
    apk = tmp_path / "app.apk"
    app = replace(app, app_name="source")
    result = create_app(toolchain, str(apk), src_file, app, targets=AppTargetConfig.only(Target.AARCH64))
    libraries = {n.library.path: n.library for n in compile_nodes(result)}
    placeholder_inject, app_inject = sorted(inject_nodes(result), key=lambda n: not libraries[n.source].placeholder)
    assert result.graph.depends_on(app_inject, placeholder_inject)

    report = execute(result.graph, result.final_node)
    assert report.ok, report.failed and report.failed.message
    (library,) = result.libraries
    with zipfile.ZipFile(apk) as zf:
        assert sorted(zf.namelist()) == ["AndroidManifest.xml", "lib/arm64-v8a/libsource.so"]
        assert zf.read("lib/arm64-v8a/libsource.so") == b"\x7fELF" + library.path.encode()
