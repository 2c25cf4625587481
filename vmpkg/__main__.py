# vmpkg/__main__.py
import sys

from vmpkg.cli import main

if __name__ == "__main__":
    sys.exit(main())
