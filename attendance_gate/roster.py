"""
Roster file adapter.

Layout (written by the enrollment tooling):
- <name>.npz   roll_number -> embedding vector (float32)
- <name>.json  {"names": {roll_number: full_name}, ...metadata}
"""
from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import numpy as np
from .recognize.errors import RosterError
from .recognize.types import EnrolledIdentity

logger = logging.getLogger(__name__)

def _names_path(npz_path: Path) -> Path:
    return npz_path.with_suffix(".json")

class NpzRoster:
    def __init__(self, npz_path: Path):
        self.npz_path = Path(npz_path)

    def _load_names(self) -> Dict[str, str]:
        path = _names_path(self.npz_path)
        if not path.exists():
            return {}
        try:
            meta = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RosterError(f"Cannot read roster names {path}: {e}") from e
        return {str(k): str(v) for k, v in meta.get("names", {}).items()}

    def list_enrolled_identities(self) -> List[EnrolledIdentity]:
        if not self.npz_path.exists():
            logger.warning(f"Roster file {self.npz_path} not found, roster is empty")
            return []
        try:
            data = np.load(str(self.npz_path), allow_pickle=False)
        except (OSError, ValueError) as e:
            raise RosterError(f"Cannot read roster {self.npz_path}: {e}") from e

        names = self._load_names()
        out: List[EnrolledIdentity] = []
        skipped = 0
        with data:
            for roll in data.files:
                emb = np.asarray(data[roll], dtype=np.float32).reshape(-1)
                # students without a captured face are not matchable
                if emb.size == 0 or not np.all(np.isfinite(emb)):
                    skipped += 1
                    continue
                out.append(EnrolledIdentity(roll_number=roll, full_name=names.get(roll, roll), embedding=emb))
        if skipped:
            logger.info(f"Skipped {skipped} roster entries without a usable embedding")
        logger.info(f"Loaded {len(out)} enrolled identities from {self.npz_path}")
        return out

def save_roster(npz_path: Path, identities: Sequence[EnrolledIdentity], meta: Optional[dict] = None) -> None:
    npz_path = Path(npz_path)
    npz_path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(
        npz_path,
        **{i.roll_number: np.asarray(i.embedding, dtype=np.float32).reshape(-1) for i in identities},
    )
    doc = dict(meta or {})
    doc["names"] = {i.roll_number: i.full_name for i in identities}
    _names_path(npz_path).write_text(json.dumps(doc, indent=2), encoding="utf-8")
