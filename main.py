#!/usr/bin/env python3
"""
main.py - Launcher for running offsite from a checkout or a frozen bundle without installing it.

    sudo ./main.py backup rust/containers@auto-20250716-104500
"""
import sys
from pathlib import Path

if __name__ == "__main__":
    here = str(Path(__file__).resolve().parent)
    if here not in sys.path:
        sys.path.insert(0, here)

    try:
        from offsite.cli import main
    except ImportError as e:
        print(f"Error importing offsite: {e}")
        print("Run main.py from the project root, or install the package with 'pip install .'")
        sys.exit(1)
    sys.exit(main())
