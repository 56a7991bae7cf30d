from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict, Iterable, List, Optional

from warden.core.audit.hasher import GENESIS_HASH


def _line(record: Dict[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False, default=str, separators=(",", ":")) + "\n"


class AuditJsonlSink:
    """
    One JSON object per line, plus a small `<name>.head.json` marker holding
    the last hash and the record count. The marker lets a restart notice a
    log that was truncated or edited behind the process's back.
    """

    def __init__(self, *, path: str):
        self.path = path
        root, _ = os.path.splitext(path)
        self.head_path = root + ".head.json"
        self._lock = threading.Lock()
        self._count: Optional[int] = None
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    def read_head(self) -> Dict[str, Any]:
        if not os.path.exists(self.head_path):
            return {"head_hash": GENESIS_HASH, "records": 0}
        try:
            with open(self.head_path, "r", encoding="utf-8") as f:
                obj = json.load(f)
        except (OSError, ValueError):
            return {"head_hash": GENESIS_HASH, "records": 0}
        return {"head_hash": str(obj.get("head_hash") or GENESIS_HASH), "records": int(obj.get("records") or 0)}

    def read_head_hash(self) -> str:
        return self.read_head()["head_hash"]

    def _mark_locked(self, head_hash: str, records: int) -> None:
        self._count = records
        tmp = self.head_path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"head_hash": head_hash, "records": records}, f)
        os.replace(tmp, self.head_path)

    def append(self, record: Dict[str, Any]) -> None:
        with self._lock:
            if self._count is None:
                self._count = self.read_head()["records"]
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(_line(record))
            self._mark_locked(str(record.get("hash") or GENESIS_HASH), self._count + 1)

    def rewrite(self, records: Iterable[Dict[str, Any]]) -> int:
        """Swap in a rechained log after retention cleanup."""
        recs = list(records)
        with self._lock:
            tmp = self.path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                f.writelines(_line(r) for r in recs)
            os.replace(tmp, self.path)
            self._mark_locked(str(recs[-1].get("hash")) if recs else GENESIS_HASH, len(recs))
        return len(recs)

    def read_all(self) -> List[Dict[str, Any]]:
        """Parsed records in file order. Lines that are not JSON objects are skipped."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.readlines()
        except FileNotFoundError:
            return []
        out: List[Dict[str, Any]] = []
        for line in raw:
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
            except ValueError:
                continue
            if isinstance(obj, dict):
                out.append(obj)
        return out
