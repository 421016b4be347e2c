from __future__ import annotations

from opf_dispatch.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
