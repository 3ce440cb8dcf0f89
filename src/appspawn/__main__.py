"""Allow ``python -m appspawn``."""

from appspawn.cli import main

if __name__ == "__main__":
    main()
