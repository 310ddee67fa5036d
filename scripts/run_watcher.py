#!/usr/bin/env python3
"""
Whale watcher launcher script.

Starts the watcher with the dev.yaml configuration. Extra command line
arguments (for example --token or --chain) are passed through.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from whalewatch.runner.watcher import main


if __name__ == "__main__":
    sys.argv = ["whalewatch", "--config", "configs/dev.yaml", "--profile", "dev", *sys.argv[1:]]

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nWhale watcher stopped by user.")
        sys.exit(0)
