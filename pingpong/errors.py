"""Error kinds reported while ingesting metrics."""
from typing import Optional


class MetricError(Exception):
    """Base class for ingestion errors.

    Carries the metric name it relates to (when known) so a batch can
    report exactly which family or sample was refused.
    """

    kind = "MetricError"

    def __init__(self, message: str, metric: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.metric = metric

    def __str__(self):
        if self.metric:
            return f"{self.kind} {self.metric}: {self.message}"
        return f"{self.kind}: {self.message}"


class InvalidIdentifier(MetricError):
    """Metric or label name does not match [a-zA-Z_][a-zA-Z0-9_]*."""
    kind = "InvalidIdentifier"


class MalformedInput(MetricError):
    """Payload cannot be parsed as any supported format."""
    kind = "MalformedInput"


class LabelSetMismatch(MetricError):
    """Sample label names differ from the family's schema."""
    kind = "LabelSetMismatch"


class UnknownMetric(MetricError):
    """Update references a metric that was never created."""
    kind = "UnknownMetric"


class ValueParseError(MetricError):
    """Sample value (or timestamp) is not a usable number."""
    kind = "ValueParseError"


class UnsupportedType(MetricError):
    """Family type is not a counter."""
    kind = "UnsupportedType"


class RegistrationError(MetricError):
    """Counter backend refused to register the family."""
    kind = "RegistrationError"
