"""Test code updater service for safely reading and rewriting API test files."""

import os
import shutil
import tempfile
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.exceptions import FileIOError


logger = logging.getLogger(__name__)


class ApiTestCodeUpdater:
    """File store for test sources: reads, atomic writes and timestamped backups."""

    def __init__(self, backup_dir: Optional[str] = None):
        """Initialize the test code updater.

        Args:
            backup_dir: Directory to store backup files. If None, uses temp directory.
        """
        self.backup_dir = Path(backup_dir) if backup_dir else Path(tempfile.gettempdir()) / "api_test_backups"
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def read_test_source(self, file_path: str) -> str:
        """Read the current source text of a test file.

        Raises:
            FileIOError: If the file is missing or unreadable
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return f.read()
        except OSError as e:
            logger.error(f"Failed to read test file {file_path}: {e}")
            raise FileIOError(f"Failed to read test file: {e}", file_path) from e

    def write_test_source(self, file_path: str, source: str) -> None:
        """Overwrite a test file atomically through a temporary sibling file.

        Raises:
            FileIOError: If the write or the final move fails
        """
        temp_file = f"{file_path}.tmp"
        try:
            with open(temp_file, 'w', encoding='utf-8') as f:
                f.write(source)
            shutil.move(temp_file, file_path)
            logger.info(f"Updated test source: {file_path}")
        except OSError as e:
            if os.path.exists(temp_file):
                os.remove(temp_file)
            logger.error(f"Failed to write test file {file_path}: {e}")
            raise FileIOError(f"Failed to write test file: {e}", file_path) from e

    def backup_test_file(self, file_path: str) -> str:
        """Create a timestamped backup of the test file.

        Args:
            file_path: Path to the test file to backup

        Returns:
            Path to the backup file

        Raises:
            FileIOError: If the source file doesn't exist or the copy fails
        """
        source_path = Path(file_path)
        if not source_path.exists():
            raise FileIOError(f"Test file not found: {file_path}", file_path)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        backup_path = self.backup_dir / f"{source_path.stem}_{timestamp}{source_path.suffix}"

        try:
            shutil.copy2(source_path, backup_path)
        except OSError as e:
            logger.error(f"Failed to create backup: {e}")
            raise FileIOError(f"Failed to create backup: {e}", file_path) from e

        logger.info(f"Created backup: {backup_path}")
        return str(backup_path)

    def restore_from_backup(self, file_path: str, backup_path: str) -> None:
        """Restore a test file from its backup.

        Raises:
            FileIOError: If the backup is missing or the copy fails
        """
        if not Path(backup_path).exists():
            raise FileIOError(f"Backup file not found: {backup_path}", backup_path)

        try:
            shutil.copy2(backup_path, file_path)
        except OSError as e:
            logger.error(f"Failed to restore from backup: {e}")
            raise FileIOError(f"Failed to restore from backup: {e}", file_path) from e

        logger.info(f"Restored {file_path} from backup {backup_path}")

    def cleanup_old_backups(self, retention_days: int = 7) -> int:
        """Delete backup files older than ``retention_days``.

        Returns:
            Number of backup files deleted
        """
        deleted_count = 0
        cutoff_time = datetime.now().timestamp() - (retention_days * 24 * 3600)

        try:
            for backup_file in self.backup_dir.iterdir():
                if backup_file.is_file() and backup_file.stat().st_mtime < cutoff_time:
                    backup_file.unlink()
                    deleted_count += 1
                    logger.info(f"Deleted old backup: {backup_file}")
        except OSError as e:
            logger.error(f"Error cleaning up backups: {e}")
            raise FileIOError(f"Error cleaning up backups: {e}", str(self.backup_dir)) from e

        return deleted_count

    def get_backup_info(self, file_path: str) -> List[Dict[str, Any]]:
        """Available backups for a test file, newest first."""
        source_path = Path(file_path)
        backups = []

        try:
            for backup_file in self.backup_dir.glob(f"{source_path.stem}_*{source_path.suffix}"):
                stat = backup_file.stat()
                backups.append({
                    "path": str(backup_file),
                    "created": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                    "size": stat.st_size
                })
        except OSError as e:
            logger.error(f"Error getting backup info: {e}")
            raise FileIOError(f"Error getting backup info: {e}", file_path) from e

        return sorted(backups, key=lambda info: info["path"], reverse=True)
