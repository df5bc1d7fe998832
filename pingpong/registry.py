"""Dynamic metric registry: create, update and snapshot counters."""
import logging
import math
import threading
from typing import Dict, List, NamedTuple, Optional, Tuple

from pingpong.counters import PrometheusCounters
from pingpong.errors import (
    InvalidIdentifier, LabelSetMismatch, MetricError, RegistrationError,
    UnknownMetric, UnsupportedType, ValueParseError
)
from pingpong.series import (
    COUNTER, LabelKey, LabelSet, MetricFamily, Sample, validate_token
)
from pingpong.translator import encode_sample_line

logger = logging.getLogger(__name__)

ACCEPTED_TYPES = ("", COUNTER, "untyped")


class BatchResult(NamedTuple):
    """Exposition lines for what was recorded plus what was refused."""
    lines: List[str]
    errors: List[MetricError]


class RegisteredFamily:
    """A family whose schema is fixed, with its live counter children."""

    def __init__(self, name: str, help_text: str, label_set: LabelSet):
        self.name = name
        self.help = help_text
        self.type = COUNTER
        self.label_set = label_set
        # label key -> (labels, counter handle)
        self.children: Dict[LabelKey, Tuple[Dict[str, str], object]] = {}


class MetricRegistry:
    """
    Owns every dynamically created metric family.

    Structural changes (a new family or a new label vector) are serialized
    by a single lock; counter increments happen outside it and rely on the
    counter backend being thread-safe.
    """

    def __init__(self, counters: Optional[PrometheusCounters] = None):
        self.counters = counters if counters is not None else PrometheusCounters()
        self._families: Dict[str, RegisteredFamily] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._families)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._families

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._families)

    # Create

    def create(self, families: List[MetricFamily]) -> BatchResult:
        """
        Register unseen families and add each sample value to its counter.

        The first sample of a family fixes the label set for the request;
        samples that disagree are refused individually.
        """
        result = BatchResult([], [])
        for family in families:
            self._create_family(family, result)
        return result

    def _create_family(self, incoming: MetricFamily, result: BatchResult):
        name = incoming.name
        if not validate_token(name):
            self._reject(result, InvalidIdentifier(f"invalid metric name {name!r}", metric=name))
            return

        metric_type = (incoming.type or "").lower()
        if metric_type not in ACCEPTED_TYPES:
            self._reject(result, UnsupportedType(f"type {incoming.type!r} is not a counter", metric=name))
            return

        request = MetricFamily(name=name, help=incoming.help)
        for sample in incoming.samples:
            if math.isnan(sample.value) or sample.value < 0:
                self._reject(result, ValueParseError(
                    f"counter increment must be a non-negative number, got {sample.value}",
                    metric=name
                ))
                continue
            try:
                request.accept(sample)
            except MetricError as e:
                e.metric = e.metric or name
                self._reject(result, e)

        if request.schema_pending:
            logger.debug(f"No usable samples for {name}, nothing to create")
            return

        try:
            registered = self._get_or_register(request)
        except RegistrationError as e:
            self._reject(result, e)
            return

        if request.label_set != registered.label_set:
            for _ in request.samples:
                self._reject(result, LabelSetMismatch(
                    f"labels {request.label_set} do not match {registered.label_set}",
                    metric=name
                ))
            return

        for sample in request.samples:
            handle = self._child(registered, sample)
            self.counters.increment(handle, sample.value)
            result.lines.append(encode_sample_line(name, sample))

    def _get_or_register(self, request: MetricFamily) -> RegisteredFamily:
        with self._lock:
            existing = self._families.get(request.name)
            if existing is not None:
                return existing
            try:
                self.counters.register(request.name, request.help, request.label_set.sorted())
            except ValueError as e:
                raise RegistrationError(str(e), metric=request.name)
            family = RegisteredFamily(
                request.name,
                request.help or f"Custom Metric for {request.name}",
                request.label_set
            )
            self._families[request.name] = family

        logger.info(f"Created metric family {request.name} with labels {request.label_set}")
        return family

    def _child(self, family: RegisteredFamily, sample: Sample):
        key = sample.label_key()
        child = family.children.get(key)
        if child is None:
            with self._lock:
                child = family.children.get(key)
                if child is None:
                    handle = self.counters.get_or_create(family.name, sample.labels)
                    child = (dict(sample.labels), handle)
                    family.children[key] = child
        return child[1]

    # Update

    def update(self, families: List[MetricFamily]) -> BatchResult:
        """Increment existing counters by one and report their new totals."""
        result = BatchResult([], [])
        for family in families:
            self._update_family(family, result)
        return result

    def _update_family(self, incoming: MetricFamily, result: BatchResult):
        name = incoming.name
        with self._lock:
            registered = self._families.get(name)

        if registered is None:
            self._reject(result, UnknownMetric("metric was never created", metric=name))
            return

        for sample in incoming.samples:
            try:
                label_set = sample.label_set()
            except InvalidIdentifier as e:
                e.metric = name
                self._reject(result, e)
                continue

            if label_set != registered.label_set:
                self._reject(result, LabelSetMismatch(
                    f"labels {label_set} do not match {registered.label_set}",
                    metric=name
                ))
                continue

            handle = self._child(registered, sample)
            self.counters.increment(handle, 1)
            total = self.counters.current_value(handle)
            result.lines.append(encode_sample_line(name, Sample(sample.labels, total)))

    # Snapshot

    def snapshot(self) -> List[MetricFamily]:
        """
        Point-in-time copy of every family.

        Only the set of (family, label vector) identities is copied under
        the lock; counter values are read afterwards.
        """
        with self._lock:
            identities = [
                (family, list(family.children.items()))
                for family in self._families.values()
            ]

        snapshot = []
        for family, children in sorted(identities, key=lambda item: item[0].name):
            samples = [
                Sample(dict(labels), self.counters.current_value(handle))
                for _, (labels, handle) in sorted(children, key=lambda child: child[0])
            ]
            snapshot.append(MetricFamily(
                name=family.name,
                help=family.help,
                type=family.type,
                samples=samples,
                label_set=family.label_set
            ))
        return snapshot

    @staticmethod
    def _reject(result: BatchResult, error: MetricError):
        logger.warning(f"Rejected: {error}")
        result.errors.append(error)
