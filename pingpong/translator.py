"""Translation between exposition text, JSON and metric families."""
import json
import logging
import math
import re
from typing import Any, Dict, List, NamedTuple, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from pingpong.errors import (
    InvalidIdentifier, MalformedInput, MetricError, ValueParseError
)
from pingpong.series import MetricFamily, Sample, validate_token

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
TEXT_CONTENT_TYPE = "text/plain"

TEXT_CONTENT_TYPES = (FORM_CONTENT_TYPE, TEXT_CONTENT_TYPE)

_METADATA_LINE = re.compile(r'^#\s*(HELP|TYPE)\s+(\S+)(?:\s(.*))?$')
_SAMPLE_LINE = re.compile(
    r'^(?P<name>[^\s{]+)'
    r'(?:\s*\{(?P<labels>(?:[^"}]|"(?:[^"\\]|\\.)*")*)\})?'
    r'\s+(?P<value>\S+)'
    r'(?:\s+(?P<timestamp>\S+))?\s*$'
)
_LABEL_PAIR = re.compile(r'\s*([^\s=,]+)\s*=\s*"((?:[^"\\]|\\.)*)"\s*(,|$)')
_FLOAT = re.compile(r'^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$')
_INTEGER = re.compile(r'^[+-]?\d+$')

_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}
_SPECIAL_VALUES = {"+Inf": math.inf, "Inf": math.inf, "-Inf": -math.inf, "NaN": math.nan}


class MetricEntry(BaseModel):
    """One sample as it appears in the JSON document."""
    labels: Dict[str, str] = Field(default_factory=dict)
    value: Any = None
    timestamp_ms: Any = None


class MetricInfo(BaseModel):
    """One metric family as it appears in the JSON document."""
    name: str
    help: str = ""
    type: str = ""
    # Entries are validated one by one so a bad sample only drops itself
    metrics: List[Any] = Field(default_factory=list)


class DecodeResult(NamedTuple):
    """Families decoded from a payload plus the samples that were dropped."""
    families: List[MetricFamily]
    errors: List[MetricError]


def parse_value(raw: Any) -> float:
    """Parse a sample value, accepting the exposition special values."""
    if raw is None:
        raise ValueError("missing value")
    if isinstance(raw, bool):
        raise ValueError(f"invalid value {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    if not isinstance(raw, str):
        raise ValueError(f"invalid value {raw!r}")
    text = raw.strip()
    if text in _SPECIAL_VALUES:
        return _SPECIAL_VALUES[text]
    if not _FLOAT.match(text):
        raise ValueError(f"invalid value {raw!r}")
    return float(text)


def parse_timestamp(raw: Any) -> Optional[int]:
    """Parse an integer millisecond timestamp; absent or empty means none."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and _INTEGER.match(raw.strip()):
        return int(raw)
    raise ValueError(f"invalid timestamp {raw!r}")


def format_value(value: float) -> str:
    """Format a value the way exposition consumers expect."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _unescape(text: str) -> str:
    out = []
    chars = iter(text)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            out.append(_ESCAPES.get(nxt, "\\" + nxt))
        else:
            out.append(ch)
    return "".join(out)


# Decoding: JSON

def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(map(str, err['loc'])) or 'sample'}: {err['msg']}"
        for err in error.errors()
    )


def decode_json(raw: Union[bytes, str]) -> DecodeResult:
    """
    Decode a prom2json-style JSON document.

    Raises:
        MalformedInput: invalid JSON, a non-array document or a family
            without a name.
    """
    try:
        document = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedInput(f"invalid JSON: {e}")

    if not isinstance(document, list):
        raise MalformedInput("top-level JSON value must be an array")

    try:
        infos = [MetricInfo.model_validate(item) for item in document]
    except ValidationError as e:
        raise MalformedInput(f"invalid metric description: {e}")

    families: List[MetricFamily] = []
    errors: List[MetricError] = []
    for info in infos:
        family = MetricFamily(name=info.name, help=info.help, type=info.type)
        for item in info.metrics:
            try:
                entry = MetricEntry.model_validate(item)
                sample = Sample(
                    labels=dict(entry.labels),
                    value=parse_value(entry.value),
                    timestamp_ms=parse_timestamp(entry.timestamp_ms)
                )
            except ValidationError as e:
                reason = _describe(e)
                logger.warning(f"Dropping sample of {info.name}: {reason}")
                errors.append(ValueParseError(f"invalid sample: {reason}", metric=info.name))
                continue
            except (TypeError, ValueError) as e:
                logger.warning(f"Dropping sample of {info.name} with labels {entry.labels}: {e}")
                errors.append(ValueParseError(str(e), metric=info.name))
                continue
            family.samples.append(sample)
        families.append(family)

    return DecodeResult(families, errors)


# Decoding: exposition text

def _parse_labels(body: str, metric: str) -> Dict[str, str]:
    labels: Dict[str, str] = {}
    pos = 0
    body = body.strip()
    while pos < len(body):
        match = _LABEL_PAIR.match(body, pos)
        if not match:
            raise ValueError(f"cannot parse labels {body!r}")
        name, value = match.group(1), _unescape(match.group(2))
        if not validate_token(name):
            raise InvalidIdentifier(f"invalid label name {name!r}", metric=metric)
        if name in labels:
            raise InvalidIdentifier(f"duplicate label name {name!r}", metric=metric)
        labels[name] = value
        pos = match.end()
    return labels


def decode_text(raw: Union[bytes, str]) -> DecodeResult:
    """
    Decode Prometheus text exposition into metric families.

    Metadata lines may precede or follow the samples of their family.
    Lines with a bad value or label are skipped and reported.

    Raises:
        MalformedInput: a line matches neither the comment nor the sample
            grammar.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedInput(f"payload is not UTF-8: {e}")

    families: Dict[str, MetricFamily] = {}
    errors: List[MetricError] = []

    def family_for(name: str) -> MetricFamily:
        if name not in families:
            families[name] = MetricFamily(name=name, type="")
        return families[name]

    for lineno, line in enumerate(raw.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue

        if line.startswith("#"):
            meta = _METADATA_LINE.match(line)
            if meta:
                kind, name, text = meta.group(1), meta.group(2), meta.group(3) or ""
                family = family_for(name)
                if kind == "HELP":
                    family.help = _unescape(text)
                else:
                    family.type = text.strip().lower()
            continue

        match = _SAMPLE_LINE.match(line)
        if not match:
            raise MalformedInput(f"line {lineno}: cannot parse {line!r}")

        name = match.group("name")
        try:
            labels = _parse_labels(match.group("labels") or "", name)
            sample = Sample(
                labels=labels,
                value=parse_value(match.group("value")),
                timestamp_ms=parse_timestamp(match.group("timestamp"))
            )
        except MetricError as e:
            logger.warning(f"Skipping line {lineno}: {e}")
            errors.append(e)
            continue
        except ValueError as e:
            logger.warning(f"Skipping line {lineno}: {e}")
            errors.append(ValueParseError(f"line {lineno}: {e}", metric=name))
            continue

        family_for(name).samples.append(sample)

    return DecodeResult(list(families.values()), errors)


def decode(content_type: str, raw: Union[bytes, str]) -> DecodeResult:
    """Decode a payload according to its content type."""
    if content_type == JSON_CONTENT_TYPE:
        return decode_json(raw)
    if content_type in TEXT_CONTENT_TYPES:
        return decode_text(raw)
    raise MalformedInput(f"unsupported content type {content_type!r}")


# Encoding

def encode_sample_line(name: str, sample: Sample, value: Optional[float] = None) -> str:
    """Render one exposition line; labels are sorted by name."""
    value = sample.value if value is None else value
    line = name
    if sample.labels:
        pairs = ",".join(
            f'{k}="{_escape_label_value(v)}"' for k, v in sorted(sample.labels.items())
        )
        line += "{" + pairs + "}"
    line += " " + format_value(value)
    if sample.timestamp_ms is not None:
        line += f" {sample.timestamp_ms}"
    return line + "\n"


def encode_family(family: MetricFamily) -> str:
    """Render a family with its HELP/TYPE header."""
    out = []
    if family.help:
        out.append(f"# HELP {family.name} {_escape_help(family.help)}\n")
    if family.type:
        out.append(f"# TYPE {family.name} {family.type}\n")
    for sample in family.samples:
        out.append(encode_sample_line(family.name, sample))
    return "".join(out)


def encode_families(families: List[MetricFamily]) -> str:
    return "\n".join(encode_family(f) for f in families)


def family_to_dict(family: MetricFamily) -> Dict:
    metrics = []
    for sample in family.samples:
        entry = {"labels": dict(sorted(sample.labels.items())), "value": format_value(sample.value)}
        if sample.timestamp_ms is not None:
            entry["timestamp_ms"] = str(sample.timestamp_ms)
        metrics.append(entry)
    return {"name": family.name, "help": family.help, "type": family.type, "metrics": metrics}


def encode_json(families: List[MetricFamily]) -> str:
    """Render families in the same JSON shape :func:`decode_json` reads."""
    return json.dumps([family_to_dict(f) for f in families])

