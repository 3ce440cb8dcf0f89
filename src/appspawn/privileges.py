"""Resolve and apply the identity a worker runs as.

Privilege lowering rules:

1. If lowering is not requested, or the manager is not running as root,
   the worker keeps the manager's identity.
2. Otherwise the worker switches to the owner of the application's startup
   file, unless that owner is root or has no passwd entry.
3. Failing that, the worker switches to ``lowest_user``.
4. If ``lowest_user`` does not exist (or is root), the worker is spawned
   without switching. This is not an error.

Resolution happens in the manager; the switch itself happens in the child
via drop_privileges().
"""

from __future__ import annotations

__all__ = [
    "PrivilegeResolver",
    "drop_privileges",
]

import logging
import os
import pwd
from pathlib import Path

from appspawn.exceptions import PrivilegeDropFailed
from appspawn.log_config import log_event
from appspawn.models import Identity, SpawnSystemEvent


def _identity_from_pwd(entry: pwd.struct_passwd) -> Identity:
    return Identity(
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        username=entry.pw_name,
        home=entry.pw_dir or "/",
    )


class PrivilegeResolver:
    """Compute the target identity for a worker."""

    def resolve(self, startup_file: Path, lower_privilege: bool, lowest_user: str) -> Identity | None:
        """Resolve the identity a worker should switch to.

        Args:
            startup_file: The application's startup file; its owner is the
                preferred identity.
            lower_privilege: Whether the request asked for lowering.
            lowest_user: Fallback user name.

        Returns:
            Target identity, or None to keep the manager's identity.
        """
        if not lower_privilege or os.geteuid() != 0:
            return None

        owner = self._startup_file_owner(startup_file)
        if owner is not None and owner.uid != 0:
            return owner

        try:
            entry = pwd.getpwnam(lowest_user)
        except KeyError:
            log_event(
                logging.WARNING,
                SpawnSystemEvent(
                    event="lowest_user_missing",
                    message=f"Lowest user '{lowest_user}' does not exist; spawning without lowering privileges",
                    details={"lowest_user": lowest_user},
                ),
            )
            return None
        if entry.pw_uid == 0:
            return None
        return _identity_from_pwd(entry)

    @staticmethod
    def _startup_file_owner(startup_file: Path) -> Identity | None:
        """Return the owner of the startup file, or None if unknown."""
        try:
            uid = startup_file.stat().st_uid
            return _identity_from_pwd(pwd.getpwuid(uid))
        except (OSError, KeyError):
            return None


def drop_privileges(identity: Identity) -> None:
    """Switch the current process to the given identity.

    Must run in the worker child, before the application is loaded.
    Group membership is changed first; it cannot be changed after the uid.

    Args:
        identity: Target user and group.

    Raises:
        PrivilegeDropFailed: If any of the switching calls fails or the
            process still has the wrong uid afterwards.
    """
    try:
        os.initgroups(identity.username, identity.gid)
        os.setgid(identity.gid)
        os.setuid(identity.uid)
    except OSError as e:
        raise PrivilegeDropFailed(
            f"Cannot switch to user {identity.username} ({identity.uid}:{identity.gid}): {e}"
        ) from e

    if os.getuid() != identity.uid or os.geteuid() != identity.uid:
        raise PrivilegeDropFailed(f"Still running as uid {os.geteuid()} after switching to {identity.uid}")

    os.environ["USER"] = identity.username
    os.environ["LOGNAME"] = identity.username
    os.environ["HOME"] = identity.home
