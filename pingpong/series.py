"""Data structures for metric families, samples and label sets."""
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from pingpong.errors import InvalidIdentifier, LabelSetMismatch

TOKEN_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')

COUNTER = "counter"

LabelKey = Tuple[Tuple[str, str], ...]


def validate_token(s: str) -> bool:
    """
    Check a metric or label name is Prometheus-safe.

    Names must match [a-zA-Z_][a-zA-Z0-9_]*
    """
    return isinstance(s, str) and TOKEN_PATTERN.match(s) is not None


@dataclass(frozen=True)
class LabelSet:
    """Unordered set of label names with a canonical sorted form."""
    names: FrozenSet[str] = frozenset()

    @classmethod
    def of(cls, names: Iterable[str]) -> "LabelSet":
        names = frozenset(names)
        for name in names:
            if not validate_token(name):
                raise InvalidIdentifier(f"invalid label name {name!r}")
        return cls(names)

    def sorted(self) -> Tuple[str, ...]:
        return tuple(sorted(self.names))

    def issubset(self, other: "LabelSet") -> bool:
        return self.names <= other.names

    def __len__(self):
        return len(self.names)

    def __str__(self):
        return "{" + ",".join(self.sorted()) + "}"


@dataclass
class Sample:
    """A single labeled observation."""
    labels: Dict[str, str]
    value: float
    timestamp_ms: Optional[int] = None

    def label_set(self) -> LabelSet:
        return LabelSet.of(self.labels.keys())

    def label_key(self) -> LabelKey:
        """Generate a stable key from sorted labels."""
        return tuple(sorted(self.labels.items()))


@dataclass
class MetricFamily:
    """
    A named group of samples sharing one label schema.

    The schema starts pending (``label_set is None``) and is fixed by the
    first sample passed to :meth:`accept`.
    """
    name: str
    help: str = ""
    type: str = COUNTER
    samples: List[Sample] = field(default_factory=list)
    label_set: Optional[LabelSet] = None

    @property
    def schema_pending(self) -> bool:
        return self.label_set is None

    def accept(self, sample: Sample) -> Sample:
        """Add a sample, fixing the schema on first use."""
        incoming = sample.label_set()
        if self.label_set is None:
            self.label_set = incoming
        elif incoming != self.label_set:
            raise LabelSetMismatch(
                f"labels {incoming} do not match {self.label_set}",
                metric=self.name
            )
        self.samples.append(sample)
        return sample
