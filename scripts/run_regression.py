"""
Run the pairwise registration regression on the configured pose chains.

Usage:
    python scripts/run_regression.py [conf files ...] [--config CONFIG] [--output-dir DIR]
"""

import sys
from pathlib import Path

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from pose_chain_registration.pipeline.runner import main


if __name__ == "__main__":
    sys.exit(main())
