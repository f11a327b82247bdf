"""Archive extraction for downloaded workflow artifacts."""

from __future__ import annotations

import dataclasses
import logging
import re
import shutil
import typing as typ
import zipfile
from pathlib import Path, PurePosixPath

from .errors import LocalIOError

__all__ = [
    "ExtractedFile",
    "iter_extracted_files",
    "sanitize_component",
    "sanitize_entry_name",
]

logger = logging.getLogger(__name__)

_UNSAFE_COMPONENT_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_COPY_BUFFER_SIZE = 1024 * 1024


@dataclasses.dataclass(slots=True, frozen=True)
class ExtractedFile:
    """A file written to disk from an artifact archive."""

    entry_name: str
    path: Path
    size: int


def sanitize_component(name: str, *, fallback: str = "artifact") -> str:
    """Return ``name`` reduced to ``[A-Za-z0-9._-]`` for use as a path segment.

    Examples
    --------
    >>> sanitize_component("linux build/x64")
    'linux_build_x64'
    >>> sanitize_component("..")
    'artifact'
    """
    cleaned = _UNSAFE_COMPONENT_CHARS.sub("_", name.strip())
    if not cleaned.strip("."):
        return fallback
    return cleaned


def sanitize_entry_name(name: str) -> PurePosixPath | None:
    """Return the relative path an archive entry should be written to.

    Backslashes are treated as separators, and empty, ``.`` and ``..``
    segments are dropped along with drive letters and leading separators.
    Returns ``None`` when nothing usable remains.

    Examples
    --------
    >>> sanitize_entry_name("../../etc/passwd")
    PurePosixPath('etc/passwd')
    >>> sanitize_entry_name("/")
    """
    parts: list[str] = []
    for segment in name.replace("\\", "/").split("/"):
        if segment in {"", ".", ".."}:
            continue
        if not parts and re.fullmatch(r"[A-Za-z]:", segment):
            continue
        parts.append(segment)
    if not parts:
        return None
    return PurePosixPath(*parts)


def _safe_target(destination_root: Path, relative: PurePosixPath) -> Path | None:
    """Resolve ``relative`` under ``destination_root`` or return ``None``."""
    target = (destination_root / relative).resolve()
    if not target.is_relative_to(destination_root):
        return None
    return target


def _write_entry(archive: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path) -> int:
    """Stream one archive member to ``target`` and return its size."""
    target.parent.mkdir(parents=True, exist_ok=True)
    with archive.open(info) as source, target.open("wb") as sink:
        shutil.copyfileobj(source, sink, _COPY_BUFFER_SIZE)
    return target.stat().st_size


def iter_extracted_files(
    archive_path: Path, destination: Path
) -> typ.Iterator[ExtractedFile]:
    """Extract ``archive_path`` into ``destination`` one entry at a time.

    The archive handle is held only while the generator is running and is
    released when iteration completes or the consumer closes it early. Only
    one member is open at any time.

    Parameters
    ----------
    archive_path
        Zip archive downloaded for an artifact.
    destination
        Directory that must contain everything written. Created if missing.

    Yields
    ------
    ExtractedFile
        One record per file entry written to disk.

    Raises
    ------
    LocalIOError
        When the archive is unreadable or a member cannot be written. Entries
        that would escape ``destination``, or that map to a path already
        extracted, are skipped with a warning instead.
    """
    try:
        destination.mkdir(parents=True, exist_ok=True)
        root = destination.resolve()
        archive = zipfile.ZipFile(archive_path)
    except (OSError, zipfile.BadZipFile) as exc:
        msg = f"Cannot open archive {archive_path.name}: {exc}"
        raise LocalIOError(msg) from exc

    with archive:
        written: set[Path] = set()
        for info in archive.infolist():
            relative = sanitize_entry_name(info.filename)
            if relative is None:
                continue
            target = _safe_target(root, relative)
            if target is None:
                logger.warning(
                    "Skipping archive entry %r: resolves outside %s",
                    info.filename,
                    destination,
                )
                continue
            if target in written:
                logger.warning(
                    "Skipping archive entry %r: %s was already extracted",
                    info.filename,
                    relative,
                )
                continue
            # zipfile raises RuntimeError for encrypted members and
            # NotImplementedError for unsupported compression methods.
            try:
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                size = _write_entry(archive, info, target)
            except (
                OSError,
                zipfile.BadZipFile,
                EOFError,
                RuntimeError,
                NotImplementedError,
            ) as exc:
                msg = f"Failed to extract {info.filename!r} from {archive_path.name}: {exc}"
                raise LocalIOError(msg) from exc
            written.add(target)
            logger.debug("Extracted %s (%d bytes)", info.filename, size)
            yield ExtractedFile(entry_name=info.filename, path=target, size=size)
