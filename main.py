#!/usr/bin/env python3
"""
main.py – SignBridge replay runner.

    python main.py --dummy 90                      # synthetic stream, demo weights
    python main.py --frames session.jsonl          # replay recorded landmarks
    python main.py --frames s.jsonl --lstm models/lstm.pt --tics head_nod eye_blink_rapid
    python main.py --dummy 120 --async             # classify on a worker thread

See :mod:`signbridge.cli` for the frame line format and all options.
"""

import sys

from signbridge.cli import main

if __name__ == "__main__":
    sys.exit(main())
