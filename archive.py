"""
ZIP compression and extraction.

Entries keep paths relative to the source, with POSIX separators.
Directories are stored as entries ending in "/", files with DEFLATE.
Password protection uses WinZip AES through pyzipper; plain archives are
ordinary ZIP files any tool can read.
"""

import logging
import os
import shutil
import zlib
from pathlib import Path
from typing import List, Optional

import pyzipper

from errors import ArchiveError

logger = logging.getLogger(__name__)

_ENCRYPTED_FLAG = 0x1


def _raise_walk_error(error: OSError):
    raise error


def _iter_source(source: Path):
    """Yield (path, arcname) pairs for source, directories before their contents."""
    if source.is_file():
        yield source, source.name
        return

    for root, dirs, files in os.walk(source, onerror=_raise_walk_error):
        dirs.sort()
        root_path = Path(root)
        rel_root = root_path.relative_to(source)
        if rel_root != Path("."):
            yield root_path, rel_root.as_posix() + "/"
        for name in sorted(files):
            yield root_path / name, (rel_root / name).as_posix()


def _open_for_writing(target: Path, password: Optional[str]):
    if password:
        zf = pyzipper.AESZipFile(target, "w", compression=pyzipper.ZIP_DEFLATED,
                                 encryption=pyzipper.WZ_AES)
        zf.setpassword(password.encode("utf-8"))
        return zf
    return pyzipper.ZipFile(target, "w", compression=pyzipper.ZIP_DEFLATED)


def compress(source, target, password: Optional[str] = None) -> List[str]:
    """
    Compress source (file or directory) into the ZIP file target.

    Returns the entry names written. Any unreadable part of the source
    aborts the whole operation.
    """
    source, target = Path(source), Path(target)
    if not source.exists():
        raise ArchiveError(f"Source {source} does not exist")

    names = []
    try:
        with _open_for_writing(target, password) as zf:
            for path, arcname in _iter_source(source):
                if arcname.endswith("/"):
                    zf.write(path, arcname)
                else:
                    zf.write(path, arcname, compress_type=pyzipper.ZIP_DEFLATED)
                names.append(arcname)
    except OSError as e:
        raise ArchiveError(f"Failed to compress {source}: {e}") from e

    logger.info("Compressed %s into %s (%d entries, encrypted=%s)",
                source, target, len(names), bool(password))
    return names


def _safe_destination(target: Path, name: str) -> Path:
    destination = (target / name).resolve()
    if destination != target and target not in destination.parents:
        raise ArchiveError(f"Entry {name} would be extracted outside {target}")
    return destination


def _extract_member(zf, info, destination: Path) -> None:
    """Write one entry; a partly written file is removed on failure."""
    try:
        with zf.open(info) as src, open(destination, "wb") as dst:
            shutil.copyfileobj(src, dst)
    except (RuntimeError, pyzipper.BadZipFile, zlib.error) as e:
        destination.unlink(missing_ok=True)
        raise ArchiveError(f"Failed to extract {info.filename}: {e}") from e
    except OSError:
        destination.unlink(missing_ok=True)
        raise


def extract(source, target, password: Optional[str] = None) -> List[str]:
    """
    Extract the ZIP file source into directory target.

    Raises ArchiveError if an encrypted entry is met without a password,
    the password is wrong, or the archive is unreadable or corrupt.
    """
    source = Path(source)
    target = Path(target)

    try:
        target.mkdir(parents=True, exist_ok=True)
        target = target.resolve()

        names = []
        with pyzipper.AESZipFile(source) as zf:
            if password:
                zf.setpassword(password.encode("utf-8"))

            for info in zf.infolist():
                destination = _safe_destination(target, info.filename)

                if info.is_dir():
                    destination.mkdir(parents=True, exist_ok=True)
                    names.append(info.filename)
                    continue

                if info.flag_bits & _ENCRYPTED_FLAG and not password:
                    raise ArchiveError(f"File {info.filename} requires a password but none was given")

                destination.parent.mkdir(parents=True, exist_ok=True)
                _extract_member(zf, info, destination)
                names.append(info.filename)

    except pyzipper.BadZipFile as e:
        raise ArchiveError(f"{source} is not a valid ZIP archive: {e}") from e
    except OSError as e:
        raise ArchiveError(f"Failed to extract {source}: {e}") from e

    logger.info("Extracted %s into %s (%d entries)", source, target, len(names))
    return names
