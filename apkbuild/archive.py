"""
In-place mutation of the APK zip archive.

All writers of one archive go through archive_lock(), so two injections into
the same file never interleave even when the executor runs them in parallel.
"""
import logging
import os
import tempfile
import threading
import zipfile
from typing import Dict

from apkbuild.config import Config
from apkbuild.errors import ArchiveError
from apkbuild.graph import BuildNode, run_command

logger = logging.getLogger(__name__)

# Zip timestamps cannot go below 1980-01-01; using it keeps the archive deterministic.
DETERMINISTIC_DATE_TIME = (1980, 1, 1, 0, 0, 0)

_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def archive_lock(path: str) -> threading.Lock:
    """Returns the process wide lock that guards writes to the archive at path."""
    key = os.path.realpath(path)
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


def _entry_info(entry_name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(entry_name, date_time=DETERMINISTIC_DATE_TIME)
    # Native libraries must stay uncompressed so they can be mapped directly.
    info.compress_type = zipfile.ZIP_STORED if entry_name.endswith(".so") else zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    return info


def _normalize_entry_name(entry_name: str) -> str:
    name = entry_name.replace("\\", "/").lstrip("/")
    if not name or name.endswith("/"):
        raise ArchiveError(f"Invalid archive entry name {entry_name!r}")
    return name


def replace_entry(archive: str, source: str, entry_name: str) -> None:
    """
    Stores the bytes of source as entry_name inside archive, replacing any
    existing entry with that name.
    Args:
        archive (str): Path to an existing zip file (e.g. an unsigned .apk).
        source (str): File whose contents become the entry.
        entry_name (str): Path of the entry inside the archive, e.g. lib/x86/libfoo.so.
    Raises:
        ArchiveError: If the archive or the source is missing, or the archive is not a zip file.
    """
    entry_name = _normalize_entry_name(entry_name)
    if not os.path.isfile(archive):
        raise ArchiveError(f"Archive not found: {archive}")
    if not os.path.isfile(source):
        raise ArchiveError(f"Source file not found: {source}")

    with open(source, "rb") as f:
        data = f.read()

    with archive_lock(archive):
        try:
            with zipfile.ZipFile(archive, "r") as zf:
                exists = entry_name in zf.namelist()
        except zipfile.BadZipFile as e:
            raise ArchiveError(f"Not a zip archive: {archive}") from e

        if not exists:
            logger.debug("Appending %s to %s", entry_name, archive)
            with zipfile.ZipFile(archive, "a") as zf:
                zf.writestr(_entry_info(entry_name), data)
            return

        # zipfile cannot delete entries, so the archive is rewritten next to the original.
        logger.debug("Replacing %s in %s", entry_name, archive)
        fd, tmp_path = tempfile.mkstemp(prefix=".zip_add-", suffix=".tmp", dir=os.path.dirname(os.path.abspath(archive)))
        os.close(fd)
        try:
            with zipfile.ZipFile(archive, "r") as src_zip, zipfile.ZipFile(tmp_path, "w") as out_zip:
                for info in src_zip.infolist():
                    if info.filename == entry_name:
                        continue
                    out_zip.writestr(info, src_zip.read(info.filename))
                out_zip.writestr(_entry_info(entry_name), data)
            os.replace(tmp_path, archive)
        except zipfile.BadZipFile as e:
            raise ArchiveError(f"Corrupt zip archive: {archive}") from e
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)


class InjectNode(BuildNode):
    """
    Writes one file into the archive by running the zip_add host tool as an
    external process. The archive lock is held for the whole call.
    """

    def __init__(self, config: Config, apk_file: str, source: str, entry_name: str):
        super().__init__(f"inject {entry_name}")
        self.apk_file = apk_file
        self.source = source
        self.entry_name = entry_name
        self.cmd = list(config.host_tools.zip_add) + [apk_file, source, entry_name]

    def make(self) -> None:
        with archive_lock(self.apk_file):
            run_command(self.cmd)
