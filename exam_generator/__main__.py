"""
Entry point for running the app as a module: python -m exam_generator
"""

import sys
from exam_generator.cli import main

if __name__ == "__main__":
    sys.exit(main())
