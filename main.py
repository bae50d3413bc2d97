#!/usr/bin/env python3
# ========================
# main.py
# ========================

"""
Main Entry Point for the NPI Score Pipeline

Runs one pipeline stage per invocation; see `python main.py --help`.

    python main.py process --input data/cms-raw/medicare-physician-services.csv
    python main.py build-db
    python main.py score
    python main.py migrate --resume
"""

import sys
from pathlib import Path

# Allow running from a source checkout without installing
sys.path.insert(0, str(Path(__file__).parent))

from npiscore.cli import main

if __name__ == '__main__':
    exit_code = main()
    sys.exit(exit_code)
