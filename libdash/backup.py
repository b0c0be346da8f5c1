"""Timestamped JSON snapshots of every storage key, with rotation and restore."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from libdash.config import settings
from libdash.storage import KeyValueStorage

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "library_backup_"


class BackupManager:
    def __init__(self, storage: KeyValueStorage, backup_dir: Optional[str] = None,
                 max_backups: Optional[int] = None) -> None:
        self.storage = storage
        self.backup_dir = Path(backup_dir or settings.backup_dir)
        self.max_backups = max_backups if max_backups is not None else settings.max_backups

    def list_backups(self) -> List[Path]:
        """Existing backups, oldest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"))

    def create_backup(self) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        dest = self.backup_dir / f"{BACKUP_PREFIX}{timestamp}.json"
        snapshot = {key: self.storage.get_item(key) for key in self.storage.keys()}
        dest.write_text(json.dumps(snapshot, ensure_ascii=False), encoding="utf-8")
        logger.info("Backup created at %s (%d keys)", dest, len(snapshot))
        self._rotate()
        return dest

    def _rotate(self) -> None:
        backups = self.list_backups()
        excess = len(backups) - self.max_backups
        for old in backups[:max(excess, 0)]:
            old.unlink()
            logger.info("Removed old backup %s", old)

    def restore(self, path: Optional[str] = None) -> Path:
        """Replace every storage key with the contents of a backup. Defaults to the latest."""
        if path:
            source = Path(path)
        else:
            backups = self.list_backups()
            if not backups:
                raise FileNotFoundError(f"No backups found in {self.backup_dir}")
            source = backups[-1]
        snapshot = json.loads(source.read_text(encoding="utf-8"))
        if not isinstance(snapshot, dict):
            raise ValueError(f"{source} is not a storage snapshot")
        bad_keys = [key for key, value in snapshot.items() if value is not None and not isinstance(value, str)]
        if bad_keys:
            raise ValueError(f"{source} holds non-text values for: {', '.join(bad_keys)}")
        self.storage.clear()
        for key, value in snapshot.items():
            if value is not None:
                self.storage.set_item(key, value)
        logger.warning("Storage restored from %s", source)
        return source
