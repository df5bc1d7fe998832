"""Tests for label sets, samples and metric families."""
import pytest

from pingpong.errors import InvalidIdentifier, LabelSetMismatch
from pingpong.series import LabelSet, MetricFamily, Sample, validate_token


@pytest.mark.parametrize("name", ["requests_total", "_private", "a", "A1_b2", "code"])
def test_valid_tokens(name):
    assert validate_token(name)


@pytest.mark.parametrize("name", ["", "9lives", "has-dash", "has space", "dotted.name", "colon:name", None])
def test_invalid_tokens(name):
    assert not validate_token(name)


def test_label_set_equality_ignores_order():
    assert LabelSet.of(["path", "code"]) == LabelSet.of(["code", "path"])
    assert LabelSet.of(["code", "path"]).sorted() == ("code", "path")
    assert str(LabelSet.of(["path", "code"])) == "{code,path}"


def test_label_set_subset():
    small = LabelSet.of(["a"])
    big = LabelSet.of(["a", "b"])
    assert small.issubset(big)
    assert not big.issubset(small)
    assert LabelSet.of([]).issubset(small)


def test_label_set_rejects_bad_names():
    with pytest.raises(InvalidIdentifier):
        LabelSet.of(["ok", "not-ok"])


def test_label_key_is_order_independent():
    a = Sample({"path": "/a", "code": "200"}, 1.0)
    b = Sample({"code": "200", "path": "/a"}, 2.0)
    assert a.label_key() == b.label_key() == (("code", "200"), ("path", "/a"))


def test_family_schema_fixed_by_first_sample():
    family = MetricFamily(name="jobs_total")
    assert family.schema_pending

    family.accept(Sample({"queue": "default"}, 1.0))
    assert not family.schema_pending
    assert family.label_set == LabelSet.of(["queue"])

    with pytest.raises(LabelSetMismatch):
        family.accept(Sample({"queue": "default", "host": "h1"}, 1.0))

    family.accept(Sample({"queue": "slow"}, 2.0))
    assert len(family.samples) == 2


def test_family_invalid_first_sample_keeps_schema_pending():
    family = MetricFamily(name="jobs_total")
    with pytest.raises(InvalidIdentifier):
        family.accept(Sample({"bad-label": "x"}, 1.0))
    assert family.schema_pending
    assert family.samples == []
