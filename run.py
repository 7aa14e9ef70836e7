#!/usr/bin/env python3
"""Development runner"""
import sys
from snapshot_agent.cli import main

if __name__ == '__main__':
    # e.g. python run.py --config ./config.json --debug
    sys.exit(main())
