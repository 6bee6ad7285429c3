# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Archive Codec - Directory trees to tar streams and back.
"""

from s3stash.archive.acl import (
    AclProvider,
    NullAclProvider,
    PosixAclProvider,
    WindowsAclProvider,
    get_acl_provider,
)

from s3stash.archive.archiver import (
    ACL_PAX_KEY,
    Archiver,
    ArchiveStats,
    create_archive_file,
    extract_archive_file,
    normalize_include_folders,
    should_include,
)

__all__ = [
    # Codec
    "Archiver",
    "ArchiveStats",
    "ACL_PAX_KEY",
    "create_archive_file",
    "extract_archive_file",
    # Include filter
    "normalize_include_folders",
    "should_include",
    # Permissions
    "AclProvider",
    "NullAclProvider",
    "PosixAclProvider",
    "WindowsAclProvider",
    "get_acl_provider",
]
