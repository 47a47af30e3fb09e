#!/usr/bin/env python3
"""
Pre-event recorder - Main Entry Point

Examples:
  python run.py --recorder front_door --config recorders.json
  python run.py --recorder front_door --no-web --max-clips 1
"""

from prerecord.runner import main


if __name__ == '__main__':
    main()
