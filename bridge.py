#!/usr/bin/env python3
"""Run the bridge from a checkout: `python bridge.py`."""

from flowbridge.bridge import run

if __name__ == "__main__":
    run()
