"""Best-effort removal of job-owned files.

Cleanup failures never change a job's outcome, so these helpers log and
return instead of raising.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


def remove_file(path: Optional[Union[str, Path]]) -> bool:
    """Delete a file if it exists. Returns True when something was removed."""
    if not path:
        return False
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"[CLEANUP] Failed to delete {path}: {e}")
        return False


def remove_tree(path: Optional[Union[str, Path]]) -> None:
    if not path:
        return
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError as e:
        logger.warning(f"[CLEANUP] Failed to remove directory {path}: {e}")
