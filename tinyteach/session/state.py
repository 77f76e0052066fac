"""
SessionState - Session Module
Explicit, passed-by-reference session context. There is no module-level
mutable state; every component receives the SessionState it works on.

Field ownership (by convention, no locks):
    gather_target        SampleCollector
    training_*           TrainingCoordinator
    predict_enabled      TrainingCoordinator / ModeController
    preview_ready        PredictionLoop
    last_sent_*          OutputGate
    mode, generation     ModeController
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from tinyteach.errors import UnknownClassError

CLASS_DEFAULT_PREFIX = "Class"


def default_class_name(class_id: int) -> str:
    return f"{CLASS_DEFAULT_PREFIX} {class_id + 1}"


@dataclass
class ClassLabel:
    id: int
    name: str
    example_count: int = 0


@dataclass
class SessionState:
    mode: Optional[str] = None
    classes: List[ClassLabel] = field(default_factory=list)
    gather_target: Optional[int] = None
    predict_enabled: bool = False
    training_completed: bool = False
    training_in_progress: bool = False
    preview_ready: bool = False
    last_prediction: List[float] = field(default_factory=list)
    last_sent_label: Optional[str] = None
    last_sent_at: float = 0.0
    # Bumped on every mode switch / reset; loops compare it to stop stale iterations.
    generation: int = 0

    @classmethod
    def with_classes(cls, names: Optional[List[str]] = None, count: int = 2) -> "SessionState":
        state = cls()
        for name in (names or [None] * count):
            state.add_class(name)
        return state

    # ── classes ──────────────────────────────────────────────────────────

    def add_class(self, name: Optional[str] = None) -> ClassLabel:
        new_id = max((c.id for c in self.classes), default=-1) + 1
        label = ClassLabel(id=new_id, name=(name or default_class_name(new_id)).strip())
        self.classes.append(label)
        return label

    def get_class(self, class_id: int) -> ClassLabel:
        for label in self.classes:
            if label.id == class_id:
                return label
        raise UnknownClassError(class_id)

    def has_class(self, class_id: int) -> bool:
        return any(c.id == class_id for c in self.classes)

    def rename_class(self, class_id: int, name: str) -> ClassLabel:
        label = self.get_class(class_id)
        label.name = (name or "").strip() or default_class_name(class_id)
        return label

    def class_index(self, class_id: int) -> int:
        """Position of a class in UI order, which is also its model output index."""
        for idx, label in enumerate(self.classes):
            if label.id == class_id:
                return idx
        raise UnknownClassError(class_id)

    @property
    def class_names(self) -> List[str]:
        return [c.name for c in self.classes]

    def reset_counts(self):
        for label in self.classes:
            label.example_count = 0

    # ── lifecycle ────────────────────────────────────────────────────────

    def reset_flags(self):
        self.gather_target = None
        self.predict_enabled = False
        self.training_completed = False
        self.preview_ready = False
        self.last_prediction = []
        self.last_sent_label = None
        self.last_sent_at = 0.0

    def next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def set_last_prediction(self, probabilities, names: Optional[List[str]] = None):
        """Store a prediction padded/truncated to the class list (missing entries = 0)."""
        names = names if names is not None else self.class_names
        values = list(probabilities) if probabilities is not None else []
        self.last_prediction = [float(values[i]) if i < len(values) else 0.0
                                for i in range(len(names))]

    def snapshot(self) -> Dict:
        return {
            "mode": self.mode,
            "classes": [
                {"id": c.id, "name": c.name, "example_count": c.example_count}
                for c in self.classes
            ],
            "gather_target": self.gather_target,
            "predict_enabled": self.predict_enabled,
            "training_completed": self.training_completed,
            "training_in_progress": self.training_in_progress,
            "preview_ready": self.preview_ready,
            "last_prediction": list(self.last_prediction),
            "last_sent_label": self.last_sent_label,
        }
