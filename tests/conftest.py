import os
import stat
import sys
from pathlib import Path

import pytest

from apkbuild.config import AppConfig, Config, HostTools, KeyStore, SystemTools
from apkbuild.targets import TARGET_SPECS

# Stand-in for aapt, zig, jarsigner, ... The behaviour depends on the name it is called by.
# Every call is appended to calls.log next to the script.
FAKE_TOOL = '''#!{python}
import os
import sys
import zipfile

name = os.path.basename(sys.argv[0])
args = sys.argv[1:]
with open(os.path.join(os.path.dirname(os.path.abspath(sys.argv[0])), "calls.log"), "a") as log:
    log.write(name + " " + " ".join(args) + "\\n")

if name == "aapt":
    apk = args[args.index("-F") + 1]
    manifest = args[args.index("-M") + 1]
    with zipfile.ZipFile(apk, "w") as zf:
        zf.write(manifest, "AndroidManifest.xml")
elif name == "zig":
    out = [a for a in args if a.startswith("-femit-bin=")][0].split("=", 1)[1]
    with open(out, "wb") as f:
        f.write(b"\\x7fELF" + out.encode())
elif name == "jarsigner":
    zipfile.ZipFile(args[-2]).close()
elif name == "zipalign":
    with open(args[-2], "rb") as src, open(args[-1], "wb") as dst:
        dst.write(src.read())
elif name == "failing":
    sys.stderr.write("failing on purpose\\n")
    sys.exit(3)
'''

FAKE_TOOLS = ("aapt", "zipalign", "zig", "jarsigner", "adb", "keytool", "failing")


def read_calls(bin_dir: Path):
    log = bin_dir / "calls.log"
    if not log.exists():
        return []
    return log.read_text().splitlines()


@pytest.fixture
def bin_dir(tmp_path) -> Path:
    d = tmp_path / "bin"
    d.mkdir()
    script = FAKE_TOOL.format(python=sys.executable)
    for name in FAKE_TOOLS:
        path = d / name
        path.write_text(script)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return d


@pytest.fixture
def sdk_tree(tmp_path):
    """A fake SDK and NDK laid out like the real ones for android-29."""
    sdk = tmp_path / "sdk"
    platform = sdk / "platforms" / "android-29"
    platform.mkdir(parents=True)
    (platform / "android.jar").write_bytes(b"PK\x05\x06" + b"\x00" * 18)

    ndk = tmp_path / "ndk"
    for spec in TARGET_SPECS.values():
        (ndk / "sysroot" / "usr" / "include" / spec.include_dir).mkdir(parents=True, exist_ok=True)
        (ndk / "platforms" / "android-29" / spec.lib_dir).mkdir(parents=True, exist_ok=True)
    return sdk, ndk


@pytest.fixture
def toolchain(tmp_path, sdk_tree, bin_dir) -> Config:
    sdk, ndk = sdk_tree
    return Config(
        sdk_root=str(sdk),
        ndk_root=str(ndk),
        build_tools=str(bin_dir),
        key_store=KeyStore(file=str(tmp_path / "debug.keystore"), alias="androiddebugkey", password="android"),
        system_tools=SystemTools(
            keytool=str(bin_dir / "keytool"),
            adb=str(bin_dir / "adb"),
            jarsigner=str(bin_dir / "jarsigner"),
            zig=str(bin_dir / "zig"),
        ),
        host_tools=HostTools(zip_add=(sys.executable, "-m", "apkbuild.zip_add")),
        cache_root=str(tmp_path / "cache"),
    )


@pytest.fixture
def app(tmp_path) -> AppConfig:
    return AppConfig(
        display_name="Demo",
        app_name="demo",
        package_name="com.example.demo",
        resource_directory=str(tmp_path / "res"),
    )


@pytest.fixture
def src_file(tmp_path) -> str:
    path = tmp_path / "main.zig"
    path.write_text("export fn ANativeActivity_onCreate() void {}\n")
    return str(path)


@pytest.fixture(autouse=True)
def _package_on_path(monkeypatch):
    # The zip_add helper runs as `python -m apkbuild.zip_add` in a child process.
    root = str(Path(__file__).resolve().parents[1])
    monkeypatch.setenv("PYTHONPATH", root + os.pathsep + os.environ.get("PYTHONPATH", ""))
