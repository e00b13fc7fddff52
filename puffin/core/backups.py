"""Timestamped local copies of the database taken around sync operations."""
import logging
import shutil
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

PUSH_PREFIX = "puffin-backup-"
PULL_PREFIX = "puffin-pre-pull-"


def create_backup(db_path: Path, backup_dir: Path, prefix: str, keep: int = 5) -> Path | None:
    """Copy ``db_path`` into ``backup_dir`` and prune older copies with the same prefix.

    Returns the backup path, or None if there was nothing to back up.
    """
    if not db_path.exists():
        return None

    backup_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S-%f")
    backup_path = backup_dir / f"{prefix}{timestamp}.db"
    shutil.copy2(db_path, backup_path)
    logger.info(f"Created local backup {backup_path.name}")

    existing = sorted(backup_dir.glob(f"{prefix}*.db"), reverse=True)
    for old in existing[keep:]:
        old.unlink(missing_ok=True)

    return backup_path


def restore_backup(backup_path: Path, db_path: Path) -> None:
    logger.warning(f"Restoring {db_path.name} from {backup_path.name}")
    shutil.copy2(backup_path, db_path)
