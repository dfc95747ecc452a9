from __future__ import annotations

from DAPR_Analysis.runner import main

if __name__ == "__main__":
    raise SystemExit(main())
