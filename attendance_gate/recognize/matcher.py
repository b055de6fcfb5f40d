import logging
import numpy as np
from typing import List, Optional, Sequence
from .errors import EmbeddingMismatch, RosterError
from .types import EnrolledIdentity, MatchResult

logger = logging.getLogger(__name__)

class IdentityMatcher:
    """
    Nearest-identity lookup by Euclidean distance over the enrolled roster.
    Linear scan; rosters are classroom-sized.
    """
    def __init__(self, identities: Sequence[EnrolledIdentity] = (), match_threshold: float = 0.45):
        self.match_threshold = float(match_threshold)
        self._identities: List[EnrolledIdentity] = []
        self._mat: Optional[np.ndarray] = None
        self.reload(identities)

    @property
    def dim(self) -> Optional[int]:
        return None if self._mat is None else int(self._mat.shape[1])

    def __len__(self) -> int:
        return len(self._identities)

    def reload(self, identities: Sequence[EnrolledIdentity]):
        """Rebuild the comparison set. Roster order is kept for tie-breaking."""
        identities = list(identities)
        if not identities:
            self._identities = []
            self._mat = None
            logger.info("Matcher loaded with empty roster, every face will be unknown")
            return

        dims = {int(np.asarray(i.embedding).size) for i in identities}
        if len(dims) != 1:
            raise RosterError(f"Roster embeddings have mixed dimensions: {sorted(dims)}")

        # (K,D)
        self._mat = np.stack(
            [np.asarray(i.embedding, dtype=np.float32).reshape(-1) for i in identities], axis=0
        )
        self._identities = identities
        logger.info(f"Matcher loaded {len(identities)} identities (dim={self._mat.shape[1]})")

    def match(self, embedding: np.ndarray) -> MatchResult:
        if self._mat is None:
            return MatchResult(identity=None, distance=float("inf"))

        e = np.asarray(embedding, dtype=np.float32).reshape(-1)
        if e.size != self._mat.shape[1]:
            raise EmbeddingMismatch(f"Embedding has {e.size} dims, roster has {self._mat.shape[1]}")

        dists = np.linalg.norm(self._mat - e[None, :], axis=1)  # (K,)
        # argmin returns the first minimum, so ties go to roster order
        best_i = int(np.argmin(dists))
        best_dist = float(dists[best_i])

        if best_dist <= self.match_threshold:
            return MatchResult(identity=self._identities[best_i], distance=best_dist)
        return MatchResult(identity=None, distance=best_dist)
