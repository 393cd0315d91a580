"""
Output root setup for materialization runs.

The link tree lives directly under the output root; run logs go to a
hidden ``.stagelink_logs`` directory beside it so they never collide with
materialized names (sanitized segments cannot start with a dot).
"""

import logging
import re
from pathlib import Path
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

LOG_DIRNAME = ".stagelink_logs"


def setup_output_directories(output_root):
    """
    Resolve and create the output root and its log directory.

    Parameters
    ----------
    output_root : str or Path
        Root of the link tree. Only real runs call this; dry runs and
        print-only runs write nothing.

    Returns
    -------
    dict
        Dictionary with paths: 'base', 'logs'
    """
    base = Path(output_root).expanduser().resolve()

    directories = {
        "base": base,
        "logs": base / LOG_DIRNAME,
    }

    for path in directories.values():
        path.mkdir(parents=True, exist_ok=True)
    logger.debug("Output directories ready: %s", ", ".join(str(p) for p in directories.values()))

    return directories


def get_log_path(output_dirs, instance_name=None):
    """
    Get a timestamped log file path for one run.

    Parameters
    ----------
    output_dirs : dict
        Output directories from setup_output_directories()
    instance_name : str or int, optional
        Pipeline instance being materialized

    Returns
    -------
    Path
        logs/materialize_<instance>_<YYYYMMDD_HHMMSS>.log

    Example
    -------
    >>> get_log_path(dirs, 'exome_mapping')
    Path('/links/.stagelink_logs/materialize_exome_mapping_20251126_221706.log')
    """
    log_dir = output_dirs["logs"]
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")

    if instance_name is not None:
        safe = re.sub(r"[^\w#-]", "_", str(instance_name))
        filename = f"materialize_{safe}_{timestamp}.log"
    else:
        filename = f"materialize_{timestamp}.log"

    return log_dir / filename
