#!/usr/bin/env python3
"""``stagelink`` lineage report runner.

Usage:
    python scripts/lineage_report.py --database provenance.db --file /data/out/NA12878.bam
    python scripts/lineage_report.py --database provenance.db --metadata sample=NA128 --format report
"""

import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root / "src"))

from stagelink.cli.run_lineage import main


if __name__ == "__main__":
    sys.exit(main())
