from __future__ import annotations

from safeoutputs.cli import main


if __name__ == "__main__":
    main()
