# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
s3stash ACL - Platform permission descriptors for archive entries.

The archiver only sees the AclProvider protocol. Descriptors are opaque
base64 text; get_acl_provider() is the one place that decides how they are
produced on the current platform.
"""

import base64
import os
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()

# Upper bound for a single ACL tool invocation
ACL_TOOL_TIMEOUT = 30


class AclProvider(Protocol):
    """Read and apply permission descriptors."""

    def get_descriptor(self, path: Path) -> str | None:
        """Return the base64 descriptor for path, or None when there is none."""
        ...

    def set_descriptor(self, path: Path, descriptor: str) -> None:
        """Apply a descriptor produced by get_descriptor to path."""
        ...


class NullAclProvider:
    """Used where ACL preservation is unsupported."""

    def get_descriptor(self, path: Path) -> str | None:
        return None

    def set_descriptor(self, path: Path, descriptor: str) -> None:
        return None


class PosixAclProvider:
    """POSIX ACLs through getfacl/setfacl."""

    def __init__(self, getfacl: str, setfacl: str | None):
        self._getfacl = getfacl
        self._setfacl = setfacl

    def get_descriptor(self, path: Path) -> str | None:
        result = subprocess.run(
            [self._getfacl, "--absolute-names", "--omit-header", str(path)],
            capture_output=True,
            timeout=ACL_TOOL_TIMEOUT,
        )
        if result.returncode != 0 or not result.stdout.strip():
            logger.debug("acl_read_skipped", path=str(path), returncode=result.returncode)
            return None
        return base64.b64encode(result.stdout).decode("ascii")

    def set_descriptor(self, path: Path, descriptor: str) -> None:
        if self._setfacl is None:
            logger.debug("acl_restore_unavailable", path=str(path), tool="setfacl")
            return

        rules = base64.b64decode(descriptor, validate=True)
        result = subprocess.run(
            [self._setfacl, "--set-file=-", str(path)],
            input=rules,
            capture_output=True,
            timeout=ACL_TOOL_TIMEOUT,
        )
        if result.returncode != 0:
            raise OSError(
                f"setfacl failed for {path}: {result.stderr.decode(errors='replace').strip()}"
            )


class WindowsAclProvider:
    """Windows ACLs through icacls /save and /restore."""

    def __init__(self, icacls: str):
        self._icacls = icacls

    def get_descriptor(self, path: Path) -> str | None:
        fd, dump = tempfile.mkstemp(prefix="stash-acl-")
        os.close(fd)
        try:
            result = subprocess.run(
                [self._icacls, str(path), "/save", dump],
                capture_output=True,
                timeout=ACL_TOOL_TIMEOUT,
            )
            if result.returncode != 0:
                logger.debug("acl_read_skipped", path=str(path), returncode=result.returncode)
                return None
            data = Path(dump).read_bytes()
        finally:
            os.unlink(dump)

        if not data:
            return None
        return base64.b64encode(data).decode("ascii")

    def set_descriptor(self, path: Path, descriptor: str) -> None:
        data = base64.b64decode(descriptor, validate=True)
        fd, dump = tempfile.mkstemp(prefix="stash-acl-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            # icacls /restore applies saved entries relative to a directory
            result = subprocess.run(
                [self._icacls, str(path.parent), "/restore", dump],
                capture_output=True,
                timeout=ACL_TOOL_TIMEOUT,
            )
        finally:
            os.unlink(dump)

        if result.returncode != 0:
            raise OSError(
                f"icacls failed for {path}: {result.stderr.decode(errors='replace').strip()}"
            )


def get_acl_provider(platform: str | None = None) -> AclProvider:
    """
    Pick the permission provider for a platform.

    Falls back to NullAclProvider when the platform is unsupported or the
    required tools are not on PATH.
    """
    platform = platform or sys.platform

    if platform.startswith(("linux", "darwin", "freebsd")):
        getfacl = shutil.which("getfacl")
        if getfacl:
            return PosixAclProvider(getfacl, shutil.which("setfacl"))
        logger.debug("acl_tool_missing", tool="getfacl")
    elif platform.startswith("win"):
        icacls = shutil.which("icacls")
        if icacls:
            return WindowsAclProvider(icacls)
        logger.debug("acl_tool_missing", tool="icacls")
    else:
        logger.debug("acl_unsupported_platform", platform=platform)

    return NullAclProvider()
