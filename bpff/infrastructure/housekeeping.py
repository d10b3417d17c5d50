import os
import shutil
import time
import logging
from pathlib import Path

PARTIAL_SUFFIX = ".bpff-part"

class HousekeepingService:
    """Service for cleaning up temporary outputs and interrupted promotions."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def reset_temp_dir(self, tmp_dir: Path, attempts: int = 3, backoff: float = 0.5) -> bool:
        """Deletes and recreates the temporary output directory."""
        removed = self.remove_tree(tmp_dir, attempts=attempts, backoff=backoff)
        tmp_dir.mkdir(parents=True, exist_ok=True)
        return removed

    def remove_tree(self, path: Path, attempts: int = 3, backoff: float = 0.5) -> bool:
        """Removes a directory tree, retrying with linear backoff. Returns False when it gave up."""
        for attempt in range(1, attempts + 1):
            if not path.exists():
                return True
            try:
                shutil.rmtree(path)
                return True
            except OSError as e:
                self.logger.warning(f"Removing {path} failed (attempt {attempt}/{attempts}): {e}")
                if attempt < attempts:
                    time.sleep(backoff * attempt)
        self.logger.error(f"Giving up on removing {path}")
        return False

    def cleanup_partial_files(self, directory: Path) -> int:
        """Recursively removes leftover *.bpff-part files from an interrupted promotion."""
        removed = 0
        for root, dirs, files in os.walk(directory):
            for file in files:
                if file.endswith(PARTIAL_SUFFIX):
                    try:
                        (Path(root) / file).unlink()
                        removed += 1
                    except OSError as e:
                        self.logger.warning(f"Could not remove partial file {file}: {e}")
        if removed:
            self.logger.info(f"Removed {removed} partial file(s) under {directory}")
        return removed
