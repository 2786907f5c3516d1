#!/usr/bin/env python3
"""
Entry point script for the live swap monitor.
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from univ3_swap_monitor.core.harvesters.rpc_harvester import main

if __name__ == "__main__":
    sys.exit(main())
