#!/usr/bin/env python3
"""
Main entry point for Screen Gaze
Run this script from the project root directory
"""

import sys

from screen_gaze.main import main

if __name__ == "__main__":
    sys.exit(main())
