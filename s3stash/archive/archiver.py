# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash Archiver - Directory tree <-> tar stream.

Archives are PAX tar streams, optionally gzip-compressed. When ACL
preservation is enabled each entry may carry a base64 permission
descriptor in the STASH.acl PAX record.

The walk is best-effort: an unreadable root aborts the archive, but an
unreadable file or directory below it is logged, recorded in the stats and
skipped. Extraction reads sequentially, so the input does not need to be
seekable.
"""

import asyncio
import os
import shutil
import subprocess
import tarfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Callable, Iterable, List

import structlog

from s3stash.archive.acl import AclProvider, NullAclProvider, get_acl_provider
from s3stash.exceptions import ArchiveError

logger = structlog.get_logger()

# Thread pool for blocking tar work
_executor = ThreadPoolExecutor(max_workers=4)

# PAX record holding the permission descriptor
ACL_PAX_KEY = "STASH.acl"

ROOT_ENTRY = "."


@dataclass
class ArchiveStats:
    """Counters describing one archive or extract pass."""

    files_processed: int = 0
    total_size: int = 0
    entries_written: int = 0
    entries_extracted: int = 0
    entries_skipped: int = 0
    skipped: List[str] = field(default_factory=list)

    def skip(self, rel_path: str) -> None:
        self.entries_skipped += 1
        self.skipped.append(rel_path)


def normalize_include_folders(include_folders: Iterable[str] | None) -> List[str]:
    """Normalize include terms to forward-slash relative prefixes."""
    terms: List[str] = []
    for term in include_folders or []:
        term = term.replace("\\", "/").strip()
        while term.startswith("./"):
            term = term[2:]
        term = term.strip("/")
        if term and term != ROOT_ENTRY and term not in terms:
            terms.append(term)
    return terms


def should_include(rel_path: str, include_folders: List[str]) -> bool:
    """
    Decide whether a relative path belongs in the archive.

    The root is always included. Otherwise a path is included when an
    include term is a prefix of it (it lies inside an included folder) or
    it is a prefix of an include term (it leads to one).
    """
    if rel_path == ROOT_ENTRY or not include_folders:
        return True

    for term in include_folders:
        if rel_path.startswith(term) or term.startswith(rel_path):
            return True

    return False


def _join(rel_dir: str, name: str) -> str:
    return name if rel_dir == ROOT_ENTRY else f"{rel_dir}/{name}"


class _EntryReader:
    """
    Feed exactly size bytes of a file to tarfile.

    The header is already in the stream when the body is read, so a file
    that shrinks or fails mid-read is zero-filled to its recorded size and
    the failure is kept in ``error``.
    """

    def __init__(self, handle: BinaryIO, size: int):
        self._handle = handle
        self._remaining = size
        self.error: OSError | None = None

    def read(self, n: int = -1) -> bytes:
        if n < 0 or n > self._remaining:
            n = self._remaining

        data = b""
        if self.error is None:
            try:
                data = self._handle.read(n)
            except OSError as e:
                self.error = e
                data = b""
            else:
                if len(data) < n:
                    self.error = OSError(f"file shrank by {self._remaining - len(data)} bytes while archiving")

        self._remaining -= n
        if len(data) < n:
            data += b"\0" * (n - len(data))
        return data


class Archiver:
    """
    Tar codec for one configured behaviour.

    Args:
        compression: gzip the stream
        preserve_acls: store and restore permission descriptors
        acl_provider: override the platform provider (mainly for tests)
    """

    def __init__(
        self,
        compression: bool = True,
        preserve_acls: bool = False,
        acl_provider: AclProvider | None = None,
    ):
        self.compression = compression
        self.preserve_acls = preserve_acls
        if acl_provider is None:
            acl_provider = get_acl_provider() if preserve_acls else NullAclProvider()
        self._acl = acl_provider

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_archive(
        self,
        fileobj: BinaryIO,
        source_path: str | Path,
        include_folders: Iterable[str] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> ArchiveStats:
        """
        Write the archive of source_path to fileobj.

        Args:
            fileobj: Binary output stream
            source_path: Root directory to archive
            include_folders: Folder prefixes to restrict the archive to
            should_stop: Polled between entries; returning True aborts

        Returns:
            ArchiveStats for the pass

        Raises:
            ArchiveError: If the root is inaccessible or the pass was stopped
        """
        root = Path(source_path)
        terms = normalize_include_folders(include_folders)

        try:
            if not root.is_dir():
                raise NotADirectoryError(f"not a directory: {root}")
            os.listdir(root)
        except OSError as e:
            raise ArchiveError(
                f"Cannot access source path: {e}",
                details={"source_path": str(root)},
            ) from e

        logger.info(
            "archive_create_started",
            source_path=str(root),
            include_folders=terms or None,
            compression=self.compression,
        )

        stats = ArchiveStats()
        mode = "w|gz" if self.compression else "w|"

        def on_walk_error(error: OSError) -> None:
            rel = os.path.relpath(error.filename or str(root), root).replace(os.sep, "/")
            logger.warning("archive_directory_unreadable", path=rel, error=str(error))
            stats.skip(rel)

        with tarfile.open(fileobj=fileobj, mode=mode, format=tarfile.PAX_FORMAT) as tar:
            self._add_entry(tar, root, ROOT_ENTRY, stats)

            for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error):
                if should_stop is not None and should_stop():
                    raise ArchiveError("Archive creation cancelled", details={"source_path": str(root)})

                rel_dir = os.path.relpath(dirpath, root).replace(os.sep, "/")

                descend: List[str] = []
                for name in dirnames:
                    rel = _join(rel_dir, name)
                    if not should_include(rel, terms):
                        continue
                    full = Path(dirpath) / name
                    self._add_entry(tar, full, rel, stats)
                    if not full.is_symlink():
                        descend.append(name)
                dirnames[:] = descend

                for name in filenames:
                    rel = _join(rel_dir, name)
                    if should_include(rel, terms):
                        self._add_entry(tar, Path(dirpath) / name, rel, stats)

        logger.info(
            "archive_create_completed",
            source_path=str(root),
            files=stats.files_processed,
            bytes=stats.total_size,
            skipped=stats.entries_skipped,
        )
        return stats

    def _add_entry(self, tar: tarfile.TarFile, full: Path, rel: str, stats: ArchiveStats) -> None:
        """
        Write one entry; per-entry failures are logged and skipped.

        A regular file that cannot be read to the end keeps its header and
        is zero-filled in the stream, but is counted as skipped. A failure
        writing to the output stream aborts the archive.
        """
        handle = None
        try:
            info = tar.gettarinfo(str(full), arcname=rel)
            if info is None:
                logger.warning("archive_entry_unsupported", path=rel)
                stats.skip(rel)
                return

            if info.isreg():
                # Open before writing the header so an unreadable file leaves no trace
                handle = open(full, "rb")

            descriptor = self._read_descriptor(full, rel)
            if descriptor:
                info.pax_headers = {**info.pax_headers, ACL_PAX_KEY: descriptor}

        except OSError as e:
            if handle is not None:
                handle.close()
            logger.warning("archive_entry_skipped", path=rel, error=str(e))
            stats.skip(rel)
            return

        reader = _EntryReader(handle, info.size) if handle is not None else None
        try:
            tar.addfile(info, reader)
        except OSError as e:
            raise ArchiveError(
                f"Failed to write {rel} to archive: {e}",
                details={"path": rel},
            ) from e
        finally:
            if handle is not None:
                handle.close()

        if reader is not None and reader.error is not None:
            logger.warning("archive_entry_truncated", path=rel, size=info.size, error=str(reader.error))
            stats.skip(rel)
            return

        stats.entries_written += 1
        if info.isreg():
            stats.files_processed += 1
            stats.total_size += info.size
            logger.debug("archive_file_added", path=rel, size=info.size)

    def _read_descriptor(self, full: Path, rel: str) -> str | None:
        if not self.preserve_acls:
            return None
        try:
            return self._acl.get_descriptor(full)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("acl_read_failed", path=rel, error=str(e))
            return None

    def count_files(
        self,
        source_path: str | Path,
        include_folders: Iterable[str] | None = None,
    ) -> int:
        """Count the regular files an archive of source_path would hold."""
        root = Path(source_path)
        terms = normalize_include_folders(include_folders)
        count = 0

        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = os.path.relpath(dirpath, root).replace(os.sep, "/")
            dirnames[:] = [
                name
                for name in dirnames
                if should_include(_join(rel_dir, name), terms)
                and not (Path(dirpath) / name).is_symlink()
            ]
            for name in filenames:
                full = Path(dirpath) / name
                if should_include(_join(rel_dir, name), terms) and full.is_file() and not full.is_symlink():
                    count += 1

        return count

    # ------------------------------------------------------------------
    # Extract
    # ------------------------------------------------------------------

    def extract_archive(
        self,
        fileobj: BinaryIO,
        dest_path: str | Path,
        should_stop: Callable[[], bool] | None = None,
    ) -> ArchiveStats:
        """
        Recreate an archive under dest_path.

        Compressed and plain streams are both accepted regardless of the
        compression setting. Entry types other than directories, regular
        files, symlinks and hard links are skipped with a warning.

        Raises:
            ArchiveError: If the stream is corrupt or an entry would land
                outside dest_path
        """
        dest = Path(dest_path)
        dest.mkdir(parents=True, exist_ok=True)
        dest_root = dest.resolve()

        logger.info("archive_extract_started", dest_path=str(dest))

        stats = ArchiveStats()
        directories: List[tuple[Path, tarfile.TarInfo]] = []

        try:
            with tarfile.open(fileobj=fileobj, mode="r|*") as tar:
                for member in tar:
                    if should_stop is not None and should_stop():
                        raise ArchiveError("Extraction cancelled", details={"dest_path": str(dest)})

                    target = self._target_for(dest_root, member.name)

                    if member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
                        directories.append((target, member))
                    elif member.isreg():
                        self._extract_file(tar, member, target)
                    elif member.issym():
                        self._extract_symlink(member, target)
                    elif member.islnk():
                        self._extract_hardlink(dest_root, member, target)
                    else:
                        logger.warning(
                            "archive_entry_type_unsupported",
                            path=member.name,
                            type=member.type.decode("ascii", errors="replace"),
                        )
                        stats.skip(member.name)
                        continue

                    stats.entries_extracted += 1
                    if member.isreg():
                        stats.files_processed += 1
                        stats.total_size += member.size

                    self._apply_descriptor(member, target)

        except tarfile.TarError as e:
            raise ArchiveError(
                f"Failed to read archive: {e}",
                details={"dest_path": str(dest)},
            ) from e
        except OSError as e:
            raise ArchiveError(
                f"Failed to extract archive: {e}",
                details={"dest_path": str(dest)},
            ) from e

        # Directory modes last, a read-only directory would block its children
        for target, member in reversed(directories):
            try:
                os.chmod(target, member.mode & 0o7777)
            except OSError as e:
                logger.warning("archive_mode_restore_failed", path=member.name, error=str(e))

        logger.info(
            "archive_extract_completed",
            dest_path=str(dest),
            entries=stats.entries_extracted,
            skipped=stats.entries_skipped,
        )
        return stats

    def _target_for(self, dest_root: Path, name: str) -> Path:
        member_path = PurePosixPath(name)
        if member_path.is_absolute() or ".." in member_path.parts:
            raise ArchiveError(f"Unsafe path in archive: {name}", details={"member": name})

        target = dest_root.joinpath(*member_path.parts) if member_path.parts else dest_root
        # A symlink extracted earlier must not redirect later entries
        if not target.parent.resolve().is_relative_to(dest_root) and target != dest_root:
            raise ArchiveError(f"Unsafe path in archive: {name}", details={"member": name})
        return target

    def _extract_file(self, tar: tarfile.TarFile, member: tarfile.TarInfo, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink():
            target.unlink()

        source = tar.extractfile(member)
        with open(target, "wb") as out:
            if source is not None:
                shutil.copyfileobj(source, out)

        os.chmod(target, member.mode & 0o7777)
        os.utime(target, (member.mtime, member.mtime))
        logger.debug("archive_file_extracted", path=member.name, size=member.size)

    def _extract_symlink(self, member: tarfile.TarInfo, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink() or target.is_file():
            target.unlink()
        os.symlink(member.linkname, target)

    def _extract_hardlink(self, dest_root: Path, member: tarfile.TarInfo, target: Path) -> None:
        source = self._target_for(dest_root, member.linkname)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink() or target.is_file():
            target.unlink()
        try:
            os.link(source, target)
        except OSError:
            shutil.copy2(source, target)

    def _apply_descriptor(self, member: tarfile.TarInfo, target: Path) -> None:
        if not self.preserve_acls or member.issym():
            return
        descriptor = member.pax_headers.get(ACL_PAX_KEY)
        if not descriptor:
            return
        try:
            self._acl.set_descriptor(target, descriptor)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.warning("acl_restore_failed", path=member.name, error=str(e))


# ============================================================================
# Async file helpers
# ============================================================================


async def _run_stoppable(func: Callable[..., ArchiveStats], *args) -> ArchiveStats:
    """Run a blocking archive pass, asking it to stop if we are cancelled."""
    stop = threading.Event()
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(_executor, func, *args, stop.is_set)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        stop.set()
        # The worker ends with ArchiveError; nobody is left to collect it
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        raise


async def create_archive_file(
    archiver: Archiver,
    source_path: str | Path,
    archive_path: Path,
    include_folders: Iterable[str] | None = None,
) -> ArchiveStats:
    """Archive source_path into archive_path without blocking the event loop."""

    def work(stop: Callable[[], bool]) -> ArchiveStats:
        with open(archive_path, "wb") as out:
            return archiver.create_archive(out, source_path, include_folders, stop)

    return await _run_stoppable(work)


async def extract_archive_file(
    archiver: Archiver,
    archive_path: Path,
    dest_path: str | Path,
) -> ArchiveStats:
    """Extract archive_path into dest_path without blocking the event loop."""

    def work(stop: Callable[[], bool]) -> ArchiveStats:
        with open(archive_path, "rb") as source:
            return archiver.extract_archive(source, dest_path, stop)

    return await _run_stoppable(work)
