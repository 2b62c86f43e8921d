"""Host tool that adds or replaces a single file inside a zip archive.

Usage: apk-zip-add <archive> <source-file> <entry-name>
"""
import argparse
import sys
from typing import List, Optional

from apkbuild.archive import replace_entry
from apkbuild.errors import ArchiveError


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="apk-zip-add",
        description="Store a file inside an existing zip archive, replacing any entry with the same name.",
    )
    parser.add_argument("archive", help="Path to the zip archive to modify in place.")
    parser.add_argument("source", help="File to store in the archive.")
    parser.add_argument("entry", help="Name of the entry inside the archive, e.g. lib/arm64-v8a/libapp.so.")
    ns = parser.parse_args(argv)

    try:
        replace_entry(ns.archive, ns.source, ns.entry)
    except ArchiveError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: could not update {ns.archive}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
