"""
Dataset - Session Module
Ordered, labelled feature vectors collected during a session.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
from sklearn.utils import shuffle as sk_shuffle

from tinyteach.errors import UnknownClassError
from tinyteach.session.state import SessionState
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class Sample:
    feature_vector: np.ndarray
    label_id: int

    def __post_init__(self):
        vector = np.array(self.feature_vector, dtype=np.float32).reshape(-1)
        vector.setflags(write=False)
        object.__setattr__(self, "feature_vector", vector)


class Dataset:
    """
    Samples in collection order.

    Invariants:
        every sample's label_id names a class of the session
        every feature vector has the same length (fixed by the first sample)
    """

    def __init__(self, session: SessionState):
        self.session = session
        self._samples: List[Sample] = []

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self):
        return iter(self._samples)

    @property
    def samples(self) -> List[Sample]:
        return list(self._samples)

    @property
    def feature_dim(self) -> Optional[int]:
        return self._samples[0].feature_vector.shape[0] if self._samples else None

    def add(self, feature_vector: np.ndarray, label_id: int) -> Sample:
        if not self.session.has_class(label_id):
            raise UnknownClassError(label_id)

        sample = Sample(feature_vector, label_id)
        dim = self.feature_dim
        if dim is not None and sample.feature_vector.shape[0] != dim:
            raise ValueError(
                f"Feature vector has {sample.feature_vector.shape[0]} values, dataset uses {dim}"
            )
        self._samples.append(sample)
        return sample

    def snapshot(self) -> Tuple[np.ndarray, np.ndarray]:
        """Copy of (features (N, d) float32, label ids (N,) int) at this instant."""
        if not self._samples:
            return np.empty((0, 0), dtype=np.float32), np.empty((0,), dtype=np.int64)
        features = np.stack([s.feature_vector for s in self._samples]).astype(np.float32)
        labels = np.array([s.label_id for s in self._samples], dtype=np.int64)
        return features, labels

    def counts_by_label(self) -> Dict[int, int]:
        counts: Dict[int, int] = {}
        for s in self._samples:
            counts[s.label_id] = counts.get(s.label_id, 0) + 1
        return counts

    def clear(self):
        self._samples.clear()

    # ── persistence ──────────────────────────────────────────────────────

    def save(self, path: str):
        features, labels = self.snapshot()
        np.savez_compressed(
            path,
            features=features,
            labels=labels,
            class_ids=np.array([c.id for c in self.session.classes], dtype=np.int64),
            class_names=np.array(self.session.class_names),
        )
        logger.info(f"✅ Dataset saved: {path} ({len(self)} samples)")

    def load(self, path: str, replace_classes: bool = True) -> int:
        """Load samples from an .npz export. Returns the number of samples added."""
        with np.load(path, allow_pickle=False) as data:
            features = data["features"]
            labels = data["labels"]
            class_ids = data["class_ids"].tolist()
            class_names = [str(n) for n in data["class_names"]]

        if replace_classes:
            self.clear()
            self.session.classes.clear()
            for cid, name in sorted(zip(class_ids, class_names)):
                label = self.session.add_class(name)
                if label.id != cid:
                    raise ValueError(f"Non-contiguous class ids in {path}")

        for vector, label_id in zip(features, labels):
            self.add(vector, int(label_id))
            self.session.get_class(int(label_id)).example_count += 1

        logger.info(f"Loaded {len(labels)} samples across {len(set(labels.tolist()))} classes.")
        return len(labels)


def shuffle_pairs(features: np.ndarray, labels: np.ndarray,
                  random_state: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Shuffle features and labels with one permutation so pairs stay together."""
    if len(features) != len(labels):
        raise ValueError(f"{len(features)} feature rows but {len(labels)} labels")
    return sk_shuffle(features, labels, random_state=random_state)
