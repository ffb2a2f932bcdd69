"""
Entry point for running the package as a module: python -m exam_rag
"""

import sys
from exam_rag.cli import main

if __name__ == "__main__":
    sys.exit(main())
