"""
Builders for the external tool invocations around an apk: signing, aligning,
installing, starting, key store creation and recompression.

Each builder only creates nodes; nothing runs until the graph is executed.
"""
import os
from typing import Optional

from apkbuild.config import AppConfig, Config, KeyConfig, KeyStore
from apkbuild.errors import ConfigurationError
from apkbuild.graph import BuildGraph, BuildNode, CommandNode
from apkbuild.resources import NATIVE_ACTIVITY


def _key_store(config: Config) -> KeyStore:
    if config.key_store is None:
        raise ConfigurationError("Config.key_store must be set for this step")
    return config.key_store


def sign_apk(config: Config, apk_file: str) -> CommandNode:
    key_store = _key_store(config)
    return CommandNode("sign apk", [
        config.system_tools.jarsigner,
        "-sigalg", "SHA1withRSA",
        "-digestalg", "SHA1",
        "-keystore", key_store.file,
        "-storepass", key_store.password,
        apk_file,
        key_store.alias,
    ])


def align_apk(config: Config, input_apk_file: str, output_apk_file: str) -> CommandNode:
    return CommandNode("align apk", [config.tool("zipalign"), "-v", "4", input_apk_file, output_apk_file])


def install_app(config: Config, apk_file: str) -> CommandNode:
    return CommandNode("install apk", [config.system_tools.adb, "install", apk_file])


def start_app(config: Config, app: AppConfig) -> CommandNode:
    return CommandNode("start app", [
        config.system_tools.adb, "shell", "am", "start", "-n", f"{app.package_name}/{NATIVE_ACTIVITY}",
    ])


def init_keystore(config: Config, key_config: KeyConfig = KeyConfig()) -> CommandNode:
    """
    A node that initializes a new key store from the given configuration.
    config.key_store describes the key store to create.
    """
    key_store = _key_store(config)
    return CommandNode("init keystore", [
        config.system_tools.keytool,
        "-genkey",
        "-keystore", key_store.file,
        "-alias", key_store.alias,
        "-keyalg", key_config.key_algorithm.value,
        "-keysize", str(key_config.key_size),
        "-validity", str(key_config.validity),
        "-storepass", key_store.password,
        "-keypass", key_store.password,
        "-dname", key_config.distinguished_name,
    ])


def compress_apk(
    graph: BuildGraph,
    config: Config,
    input_apk_file: str,
    output_apk_file: str,
    after: Optional[BuildNode] = None,
    temp_folder: Optional[str] = None,
) -> BuildNode:
    """
    Repacks an apk with maximum deflate compression.
    Unpacks into a temporary folder, zips it again and removes the folder.
    Returns the last node of the chain.
    """
    temp_folder = temp_folder or os.path.join(config.cache_root, "apk-compress-folder")
    output_apk_file = os.path.abspath(output_apk_file)
    tools = config.system_tools

    mkdir_cmd = graph.add(CommandNode("create compress folder", [tools.mkdir, "-p", temp_folder]),
                          depends_on=[after] if after is not None else [])
    unpack_apk = graph.add(CommandNode("unpack apk", [tools.unzip, "-o", input_apk_file, "-d", temp_folder]),
                           depends_on=[mkdir_cmd])
    repack_apk = graph.add(CommandNode("repack apk", [tools.zip, "-D9r", output_apk_file, "."], cwd=temp_folder),
                           depends_on=[unpack_apk])
    return graph.add(CommandNode("remove compress folder", [tools.rm, "-rf", temp_folder]),
                     depends_on=[repack_apk])
