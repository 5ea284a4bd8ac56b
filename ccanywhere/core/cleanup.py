"""Age-based removal of old artifacts and log entries."""

import logging
import shutil
import time
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def remove_old_entries(
    directory: Union[str, Path],
    days: int,
    now: Optional[float] = None,
) -> List[Path]:
    """
    Delete files and directories in ``directory`` last modified more than
    ``days`` days ago. Returns the removed paths; a missing directory
    returns an empty list.
    """
    if days < 0:
        raise ValueError("days must be >= 0")

    root = Path(directory)
    if not root.is_dir():
        return []

    cutoff = (now if now is not None else time.time()) - days * SECONDS_PER_DAY
    removed: List[Path] = []

    for entry in sorted(root.iterdir()):
        try:
            if entry.stat().st_mtime >= cutoff:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not remove {entry}: {e}")
            continue
        removed.append(entry)

    logger.info(f"Removed {len(removed)} entries older than {days} days from {root}")
    return removed
