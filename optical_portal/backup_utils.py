from __future__ import annotations

# =========================================
# backup_utils.py
# Optical Portal - SQLite file backups
# =========================================
# Copies the database file (and its -wal / -shm companions when present)
# into BACKUP_DIR as backup_<reason>_<timestamp>.db.
# Restore always takes a "pre-restore" backup first.
# =========================================

import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime

from .errors import BackupError

logger = logging.getLogger(__name__)

COMPANION_SUFFIXES = ("-wal", "-shm")
BACKUP_NAME_RE = re.compile(r"^backup_(?P<reason>[a-z0-9-]+)_(?P<stamp>\d{8}T\d{6}(?:\d{6})?)\.db$")
REASON_RE = re.compile(r"^[a-z0-9-]{1,40}$")


@dataclass
class BackupInfo:
    filename: str
    path: str
    reason: str
    timestamp: str
    size: int
    size_formatted: str

    def to_dict(self) -> dict:
        return dict(self.__dict__)


def format_bytes(size: int) -> str:
    if size == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def _info(path: str) -> BackupInfo | None:
    name = os.path.basename(path)
    m = BACKUP_NAME_RE.match(name)
    if not m:
        return None
    stamp = datetime.strptime(m.group("stamp")[:15], "%Y%m%dT%H%M%S")
    size = os.path.getsize(path)
    return BackupInfo(
        filename=name,
        path=path,
        reason=m.group("reason"),
        timestamp=stamp.strftime("%Y-%m-%d %H:%M:%S"),
        size=size,
        size_formatted=format_bytes(size),
    )


def resolve_backup_path(backup_dir: str, filename: str) -> str:
    """Only bare backup_*.db names inside backup_dir are accepted."""
    if not filename or os.path.basename(filename) != filename or ".." in filename:
        raise BackupError("Path traversal is not allowed")
    if not BACKUP_NAME_RE.match(filename):
        raise BackupError(f"Not a backup file: {filename}")

    path = os.path.join(os.path.abspath(backup_dir), filename)
    if not os.path.isfile(path):
        raise BackupError("Backup file not found")
    return path


def create_backup(db_path: str, backup_dir: str, reason: str = "manual") -> BackupInfo:
    if not REASON_RE.match(reason or ""):
        raise BackupError(f"Invalid backup reason: {reason}")
    if not os.path.isfile(db_path):
        raise BackupError("Database file not found")

    os.makedirs(backup_dir, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
    backup_path = os.path.join(os.path.abspath(backup_dir), f"backup_{reason}_{stamp}.db")

    shutil.copy2(db_path, backup_path)
    for suffix in COMPANION_SUFFIXES:
        if os.path.exists(db_path + suffix):
            shutil.copy2(db_path + suffix, backup_path + suffix)

    logger.info("Backup created: %s", os.path.basename(backup_path))
    return _info(backup_path)


def list_backups(backup_dir: str) -> list[BackupInfo]:
    """Newest first."""
    if not os.path.isdir(backup_dir):
        return []

    backups = []
    for name in os.listdir(backup_dir):
        info = _info(os.path.join(backup_dir, name))
        if info:
            backups.append(info)
    backups.sort(key=lambda b: b.filename.rsplit("_", 1)[-1], reverse=True)
    return backups


def restore_backup(db_path: str, backup_dir: str, filename: str) -> BackupInfo:
    """
    Copies the named backup over db_path and returns the pre-restore backup.
    The caller must dispose open database connections afterwards.
    """
    source = resolve_backup_path(backup_dir, filename)

    pre_restore = None
    if os.path.isfile(db_path):
        pre_restore = create_backup(db_path, backup_dir, reason="pre-restore")

    shutil.copy2(source, db_path)
    for suffix in COMPANION_SUFFIXES:
        if os.path.exists(source + suffix):
            shutil.copy2(source + suffix, db_path + suffix)
        elif os.path.exists(db_path + suffix):
            # stale journal from the replaced database
            os.remove(db_path + suffix)

    logger.info("Database restored from %s", filename)
    return pre_restore


def delete_backup(backup_dir: str, filename: str):
    path = resolve_backup_path(backup_dir, filename)
    os.remove(path)
    for suffix in COMPANION_SUFFIXES:
        if os.path.exists(path + suffix):
            os.remove(path + suffix)
    logger.info("Backup deleted: %s", filename)
