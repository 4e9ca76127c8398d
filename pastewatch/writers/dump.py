from __future__ import annotations

import gzip
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Tuple

from . import AlertSink, Incident
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

BUCKETS = {
    "none": None,
    "daily": ("%Y", "%m", "%d"),
    "monthly": ("%Y", "%m"),
}


class DumpSink(AlertSink):
    """Archives matched pastes as ``<site>_<id>.raw[.gz]`` plus a JSON sidecar."""

    name = "dump"

    def __init__(self, base_dir: str | Path, compress: bool = False, bucket: str = "none") -> None:
        if bucket not in BUCKETS:
            raise ValueError(f"Unknown dump bucket {bucket!r}; expected one of {sorted(BUCKETS)}")
        self.base_dir = Path(base_dir)
        self.compress = compress
        self.bucket = bucket
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(self.base_dir, os.W_OK):
            raise PermissionError(f"Directory {self.base_dir} is not writable")

    @classmethod
    def from_config(cls, cfg: Dict) -> "DumpSink":
        return cls(
            cfg["directory"],
            compress=bool(cfg.get("compress", False)),
            bucket=cfg.get("bucket", "none") or "none",
        )

    def _path_for_now(self) -> Path:
        parts = BUCKETS[self.bucket]
        path = self.base_dir
        if parts:
            now = utcnow()
            for fmt in parts:
                path = path / now.strftime(fmt)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _raw_name(self, incident: Incident) -> str:
        suffix = ".raw.gz" if self.compress else ".raw"
        return f"{incident.site}_{incident.identifier}{suffix}"

    def deliver(self, incident: Incident) -> None:
        directory = self._path_for_now()
        raw_path = directory / self._raw_name(incident)
        content = (incident.content or "").encode("utf-8")
        if self.compress:
            with gzip.open(raw_path, "wb") as handle:
                handle.write(content)
        else:
            raw_path.write_bytes(content)
        annotations = {
            "site": incident.site,
            "paste_id": incident.identifier,
            "url": incident.url,
            "detected_at": incident.detected_at,
            "matches": [
                {
                    "rule": match.pattern,
                    "description": match.description,
                    "count": match.count,
                    "sample": match.sample,
                }
                for match in incident.matches
            ],
        }
        meta_path = directory / f"{incident.site}_{incident.identifier}.json"
        meta_path.write_text(json.dumps(annotations, ensure_ascii=False), encoding="utf-8")
        logger.debug("paste-archived", extra={"path": str(raw_path)})

    def _raw_files(self) -> List[Path]:
        files = list(self.base_dir.rglob("*.raw")) + list(self.base_dir.rglob("*.raw.gz"))
        return sorted(files, key=lambda path: path.stat().st_mtime)

    @staticmethod
    def _read(path: Path) -> str:
        if path.name.endswith(".gz"):
            with gzip.open(path, "rb") as handle:
                return handle.read().decode("utf-8", errors="replace")
        return path.read_text(encoding="utf-8", errors="replace")

    def recent_samples(self, limit: int) -> List[Tuple[str, str]]:
        """Newest ``limit`` archived pastes as ``(id, content)``, oldest first."""
        samples: List[Tuple[str, str]] = []
        for path in self._raw_files()[-limit:] if limit > 0 else []:
            # "<site>_<id>" on disk, "<site>:<id>" like the seen keys
            identifier = path.name.split(".raw", 1)[0].replace("_", ":", 1)
            try:
                samples.append((identifier, self._read(path)))
            except (OSError, EOFError, gzip.BadGzipFile) as exc:
                logger.warning("dump-read-error", extra={"path": str(path), "error": str(exc)})
        return samples


__all__ = ["BUCKETS", "DumpSink"]
