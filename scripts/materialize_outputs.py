#!/usr/bin/env python3
"""``stagelink`` output materialization runner.

Usage:
    python scripts/materialize_outputs.py scripts/user_config.py
    python scripts/materialize_outputs.py scripts/user_config.py --dry-run
    python scripts/materialize_outputs.py scripts/user_config.py --instance 12 --print-only

Note: User config in scripts/user_config.py; expert defaults live in
stagelink.schemas.param.ParamConfig.
"""

import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root / "src"))

from stagelink.cli.run_materialize import main


if __name__ == "__main__":
    sys.exit(main())
