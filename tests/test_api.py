"""Tests for the HTTP routes."""
import json
import logging

import pytest
from fastapi.testclient import TestClient

from pingpong.api import MetricsAPI
from pingpong.registry import MetricRegistry

FORM = {"Content-Type": "application/x-www-form-urlencoded"}
JSON = {"Content-Type": "application/json"}


@pytest.fixture
def api():
    return MetricsAPI(MetricRegistry())


@pytest.fixture
def client(api):
    return TestClient(api.app)


def test_create_from_exposition_text(client):
    response = client.post("/create", content='requests_total{path="/a",code="200"} 1\n', headers=FORM)

    assert response.status_code == 200
    assert response.text == 'created metric...\nrequests_total{code="200",path="/a"} 1\n\n'


def test_create_writes_one_block_per_family(client):
    response = client.post(
        "/create",
        content='a_total{x="1"} 1\na_total{x="2"} 2\nb_total 3\n',
        headers=FORM
    )

    assert response.status_code == 200
    assert response.text == (
        'created metric...\na_total{x="1"} 1\na_total{x="2"} 2\n\n'
        "created metric...\nb_total 3\n\n"
    )


def test_create_with_label_named_self(client):
    response = client.post("/create", content='ok_total 1\nm{self="x"} 1\n', headers=FORM)

    assert response.status_code == 200
    assert response.text == 'created metric...\nok_total 1\n\ncreated metric...\nm{self="x"} 1\n\n'
    assert 'm{self="x"} 1\n' in client.get("/metrics").text


def test_create_json_with_one_bad_typed_sample(client):
    payload = [{
        "name": "jobs_total",
        "metrics": [
            {"labels": {"q": "a"}, "value": "2"},
            {"labels": {"q": "b"}, "value": "1", "timestamp_ms": 1.5},
        ],
    }]
    response = client.post("/create", content=json.dumps(payload), headers=JSON)

    assert response.status_code == 200
    assert response.text.startswith('created metric...\njobs_total{q="a"} 2\n\n')
    assert "# ERROR ValueParseError jobs_total:" in response.text


def test_create_from_json_then_update(client):
    payload = [{
        "name": "deploys_total",
        "help": "Deploys",
        "type": "counter",
        "metrics": [{"labels": {"env": "prod"}, "value": "5"}],
    }]
    response = client.post("/create", content=json.dumps(payload), headers=JSON)
    assert response.status_code == 200
    assert 'deploys_total{env="prod"} 5\n' in response.text

    response = client.post("/update", content='deploys_total{env="prod"} 1\n', headers=FORM)
    assert response.status_code == 200
    assert response.text == 'deploys_total{env="prod"} 6\n'


def test_text_plain_with_charset_is_accepted(client):
    response = client.post("/create", content="m 1\n", headers={"Content-Type": "text/plain; charset=utf-8"})
    assert response.status_code == 200


def test_partial_success_reports_errors(client):
    client.post("/create", content='svc{a="1",b="2"} 1\n', headers=FORM)

    response = client.post(
        "/create",
        content='svc{a="1",b="2"} 1\nsvc{a="1",c="2"} 1\n',
        headers=FORM
    )

    assert response.status_code == 200
    assert 'svc{a="1",b="2"} 1\n' in response.text
    assert "# ERROR LabelSetMismatch svc:" in response.text


def test_update_unknown_metric(client):
    response = client.post("/update", content='never_created{a="1"} 1\n', headers=FORM)

    assert response.status_code == 404
    assert response.text.startswith("# ERROR UnknownMetric never_created")


def test_all_rejected_is_bad_request(client):
    response = client.post("/create", content='svc{a="1"} -4\n', headers=FORM)

    assert response.status_code == 400
    assert "# ERROR ValueParseError svc" in response.text


def test_malformed_payloads(client):
    assert client.post("/create", content="no_value_here\n", headers=FORM).status_code == 400
    assert client.post("/create", content='{"name": "m"}', headers=JSON).status_code == 400
    assert client.post("/update", content="[{]", headers=JSON).status_code == 400


def test_content_type_checks(client):
    assert client.post("/create", content=b"m 1\n").status_code == 400
    response = client.post("/create", content="<m/>", headers={"Content-Type": "application/xml"})
    assert response.status_code == 415
    assert client.get("/create").status_code == 405


def test_metrics_exposition(client):
    client.post("/create", content='# HELP jobs_total Jobs.\njobs_total{q="b"} 2\njobs_total{q="a"} 1\n', headers=FORM)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.text == (
        "# HELP jobs_total Jobs.\n"
        "# TYPE jobs_total counter\n"
        'jobs_total{q="a"} 1\n'
        'jobs_total{q="b"} 2\n'
    )


def test_metrics_as_json(client):
    client.post("/create", content='jobs_total{q="a"} 3\n', headers=FORM)

    response = client.get("/metrics", params={"format": "json"})

    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == [{
        "name": "jobs_total",
        "help": "Custom Metric for jobs_total",
        "type": "counter",
        "metrics": [{"labels": {"q": "a"}, "value": "3"}],
    }]


def test_ping_counts_into_backend_exposition(client):
    response = client.get("/ping", params={"receiver": "slack-receiver-sre"})
    assert response.status_code == 200
    assert response.text.startswith("PONG - ")

    exposition = client.get("/metrics.d").text
    assert "ping_request_count_total{" in exposition
    assert 'receiver="slack-receiver-sre"' in exposition
    assert 'path="/tmp/kafka_upload"' in exposition
    assert 'app="pingpong"' in exposition


def test_self_metrics_track_batches(client):
    client.post("/create", content='a{x="1"} 1\nb{x="1"} 1\n', headers=FORM)
    client.post("/update", content='missing 1\n', headers=FORM)

    exposition = client.get("/metrics.d").text
    assert 'pingpong_samples_recorded_total{operation="create"} 2.0' in exposition
    assert 'pingpong_samples_rejected_total{operation="update",kind="UnknownMetric"} 1.0' in exposition
    assert "pingpong_registered_families 2.0" in exposition


def test_time_and_echo(client):
    assert client.get("/time").text.startswith("The time is: ")

    response = client.post("/echo?x=1", content="hello")
    assert response.text.startswith("POST /echo?x=1 HTTP/1.1\r\n")
    assert "hello" in response.text


def test_root_dumps_headers(client):
    response = client.get("/", headers={"X-Trace": "yes"})
    assert response.text.startswith("GET / HTTP/1.1\r\n")
    assert "X-Trace: yes" in response.text


def test_healthz(client):
    client.post("/create", content="m 1\n", headers=FORM)
    body = client.get("/healthz").json()
    assert body["status"] == "healthy"
    assert body["metric_families"] == 1


@pytest.mark.parametrize("path", ["/webhook", "/v2/enqueue", "/slack", "/pagerduty"])
def test_webhook_logs_pretty_json(client, caplog, path):
    with caplog.at_level(logging.INFO, logger="pingpong.api"):
        response = client.post(path, content='{"alert": "firing"}', headers=JSON)

    assert response.status_code == 200
    assert '"alert": "firing"' in caplog.text
    assert "Webhook request:" in caplog.text


def test_webhook_requires_json(client):
    response = client.post("/webhook", content="x", headers={"Content-Type": "text/plain"})
    assert response.status_code == 415
    assert client.get("/webhook").status_code == 405
