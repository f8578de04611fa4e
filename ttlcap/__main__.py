import sys

from ttlcap.cli import main

if __name__ == "__main__":
    sys.exit(main())
