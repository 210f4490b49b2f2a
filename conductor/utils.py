from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def atomic_write_json(path: str | Path, data: Any) -> None:
    """Write JSON atomically via temp file + rename.

    Readers never observe a half-written snapshot.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(
        json.dumps(data, indent=2, default=str),
        encoding="utf-8",
    )
    os.replace(str(tmp_path), str(path))
