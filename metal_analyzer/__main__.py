"""
metal_analyzer/__main__.py
==========================

Entry point for ``python -m metal_analyzer``; see ``metal_analyzer.cli``.
"""

from metal_analyzer.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
