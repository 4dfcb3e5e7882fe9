"""Snapshot export for offline analysis.

Exports are JSON documents of the form
{"exportedAt": <ISO-8601>, "snapshot": <ClusterSnapshot>} written to
~/.liquidcache_admin/exports/ by default. Each file gets a fresh uuid4 in its
name so repeated exports in one session never collide.
"""

from __future__ import annotations

import json
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import ClusterSnapshot

EXPORT_PREFIX = "liquidcache-snapshot-"


def get_data_dir() -> Path:
    """Get user-persistent data directory.

    Returns ~/.liquidcache_admin/ by default, or LIQUIDCACHE_ADMIN_DATA_DIR env var.
    """
    return Path(os.environ.get("LIQUIDCACHE_ADMIN_DATA_DIR", Path.home() / ".liquidcache_admin"))


def build_export(snapshot: ClusterSnapshot, exported_at: datetime) -> Dict[str, Any]:
    """Build the export document for a snapshot."""
    if exported_at.tzinfo is None:
        exported_at = exported_at.replace(tzinfo=timezone.utc)
    return {
        "exportedAt": exported_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        "snapshot": snapshot.to_dict(),
    }


def export_filename() -> str:
    return f"{EXPORT_PREFIX}{uuid.uuid4()}.json"


class ExportStore:
    """Writes and reads snapshot export files."""

    def __init__(self, export_dir: Optional[Path] = None):
        self.export_dir = Path(export_dir) if export_dir else get_data_dir() / "exports"

    def write_snapshot(self, snapshot: ClusterSnapshot, exported_at: Optional[datetime] = None) -> Path:
        """Serialize a snapshot to a new export file.

        Returns:
            Path of the written file.
        """
        self.export_dir.mkdir(parents=True, exist_ok=True)
        document = build_export(snapshot, exported_at or datetime.now(timezone.utc))
        path = self.export_dir / export_filename()
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return path

    def load_export(self, path: Path) -> Optional[Dict[str, Any]]:
        """Load an export file; None if missing or unreadable."""
        path = Path(path)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None

    def list_exports(self) -> List[Path]:
        """Export files, newest first."""
        if not self.export_dir.exists():
            return []
        files = self.export_dir.glob(f"{EXPORT_PREFIX}*.json")
        return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)
