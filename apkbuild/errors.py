"""
Error taxonomy for the APK build pipeline.

Configuration problems are raised while the pipeline is being defined.
Everything that goes wrong while a node runs is reported through a
NodeResult instead, with one of the kinds below.
"""


class ApkBuildError(Exception):
    """Base class for every error raised by apkbuild."""

    kind = "error"


class ConfigurationError(ApkBuildError):
    """The caller supplied an invalid configuration or a path that does not exist."""

    kind = "configuration"


class ToolchainError(ApkBuildError):
    """An external binary could not be found or started."""

    kind = "toolchain"


class CommandFailedError(ApkBuildError):
    """An external process exited with a non-zero status."""

    kind = "command"

    def __init__(self, cmd, returncode, stdout=None, stderr=None):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Command '{' '.join(self.cmd)}' exited with status {returncode}")


class ArchiveError(ApkBuildError):
    """The archive to mutate is missing or is not a readable zip file."""

    kind = "archive"


class TransientIOError(ApkBuildError):
    """An I/O failure that may succeed when tried again."""

    kind = "transient_io"
