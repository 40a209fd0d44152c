from __future__ import annotations

from hugstatus.cli import main


if __name__ == "__main__":
    main()
