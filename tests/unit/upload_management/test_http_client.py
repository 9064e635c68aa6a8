"""Tests for HTTPClient request building and outcome classification."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from batchline.config_manager.analytics_config import ClientConfig
from batchline.errors import (
    BatchOpenError,
    JsonUnableToDeserializeError,
    NetworkInvalidDataError,
    NetworkServerLimitedError,
    NetworkServerRejectedError,
    NetworkUnexpectedHTTPCodeError,
    NetworkUnknownError,
    SettingsFailError,
)
from batchline.models import DeliveryOutcome, FailureReason, OutcomeKind
from batchline.upload_management.http_client import (
    HTTPClient,
    authorization_header_for_write_key,
    classify_response,
)

WRITE_KEY = "test-write-key"


@pytest.fixture
def client_config() -> ClientConfig:
    return ClientConfig(
        write_key=WRITE_KEY,
        api_host="api.example.com/v1",
        cdn_host="cdn.example.com/v1",
        user_agent="batchline-python/test",
    )


@pytest.fixture
def batch_file(tmp_path: Path) -> Path:
    path = tmp_path / "0-test-events.temp"
    path.write_text(
        '{ "batch": [\n{"event":"Signed Up"}\n],"sentAt":"x","writeKey":"k"}\n'
    )
    return path


def upload(client: HTTPClient, batch_file: Path) -> list[DeliveryOutcome]:
    outcomes: list[DeliveryOutcome] = []
    task = client.start_batch_upload(WRITE_KEY, batch_file, outcomes.append)
    assert task is not None
    task.resume()
    return outcomes


@pytest.mark.parametrize(
    "status, kind, reason",
    [
        (0, OutcomeKind.TERMINAL, FailureReason.SERVER_REJECTED),
        (200, OutcomeKind.SUCCESS, None),
        (1, OutcomeKind.SUCCESS, None),
        (204, OutcomeKind.SUCCESS, None),
        (299, OutcomeKind.SUCCESS, None),
        (300, OutcomeKind.RETRIABLE, FailureReason.UNEXPECTED_CODE),
        (302, OutcomeKind.RETRIABLE, FailureReason.UNEXPECTED_CODE),
        (399, OutcomeKind.RETRIABLE, FailureReason.UNEXPECTED_CODE),
        (429, OutcomeKind.RETRIABLE, FailureReason.SERVER_LIMITED),
        (400, OutcomeKind.TERMINAL, FailureReason.UNEXPECTED_CODE),
        (401, OutcomeKind.TERMINAL, FailureReason.SERVER_REJECTED),
        (413, OutcomeKind.TERMINAL, FailureReason.SERVER_REJECTED),
        (500, OutcomeKind.TERMINAL, FailureReason.SERVER_REJECTED),
        (503, OutcomeKind.TERMINAL, FailureReason.SERVER_REJECTED),
    ],
)
def test_classify_response_status_table(
    status: int, kind: OutcomeKind, reason: FailureReason | None
) -> None:
    outcome = classify_response(status)
    assert outcome.kind is kind
    assert outcome.reason is reason
    assert outcome.status_code == status
    assert outcome.should_remove is (kind is not OutcomeKind.RETRIABLE)


def test_classify_transport_error_is_retriable() -> None:
    error = requests.exceptions.ConnectionError("connection refused")

    outcome = classify_response(None, error)

    assert outcome.kind is OutcomeKind.RETRIABLE
    assert outcome.reason is FailureReason.UNKNOWN
    assert outcome.error is error
    assert not outcome.should_remove


def test_transport_error_wins_over_status() -> None:
    assert classify_response(200, OSError("reset")).kind is OutcomeKind.RETRIABLE


def test_configured_request_sets_standard_headers(client_config) -> None:
    client = HTTPClient(client_config, session=MagicMock())

    request = client.configured_request("https://api.example.com/v1/b", "POST")

    assert request.method == "POST"
    assert request.headers == {
        "Content-Type": "application/json; charset=utf-8",
        "User-Agent": "batchline-python/test",
        "Accept-Encoding": "gzip",
    }
    assert request.timeout == client_config.timeout


def test_request_factory_is_applied_last(client_config) -> None:
    def factory(request):
        request = request.with_header(
            "Authorization", f"Basic {authorization_header_for_write_key(WRITE_KEY)}"
        )
        return request.with_header("User-Agent", "custom/1.0")

    config = client_config.model_copy(update={"request_factory": factory})
    client = HTTPClient(config, session=MagicMock())

    request = client.configured_request("https://api.example.com/v1/b", "POST")

    assert request.headers["User-Agent"] == "custom/1.0"
    assert request.headers["Authorization"] == "Basic dGVzdC13cml0ZS1rZXk6"
    assert request.headers["Accept-Encoding"] == "gzip"


def test_authorization_header_encodes_key_with_empty_password() -> None:
    assert authorization_header_for_write_key("abc") == "YWJjOg=="


def test_build_url() -> None:
    assert HTTPClient.build_url("api.example.com/v1", "/b") == (
        "https://api.example.com/v1/b"
    )
    assert HTTPClient.build_url("", "/b") is None


def test_upload_task_is_not_started_until_resumed(
    client_config, batch_file, fake_session_factory
) -> None:
    session = fake_session_factory()
    client = HTTPClient(client_config, session=session)
    outcomes: list[DeliveryOutcome] = []

    task = client.start_batch_upload(WRITE_KEY, batch_file, outcomes.append)

    assert task is not None
    assert outcomes == []
    request, body = session.requests[0]
    assert request.url == "https://api.example.com/v1/b"
    assert request.method == "POST"
    assert body == batch_file

    task.resume()
    assert [o.kind for o in outcomes] == [OutcomeKind.SUCCESS]


def test_upload_bytes_sends_payload(client_config, fake_session_factory) -> None:
    session = fake_session_factory()
    client = HTTPClient(client_config, session=session)
    outcomes: list[DeliveryOutcome] = []

    task = client.start_batch_upload_bytes(WRITE_KEY, b'{"batch":[]}', outcomes.append)
    assert task is not None
    task.resume()

    assert session.requests[0][1] == b'{"batch":[]}'
    assert outcomes[0].is_success


@pytest.mark.parametrize(
    "response, error_type",
    [
        ((None, None, OSError("refused")), NetworkUnknownError),
        ((b"", 302, None), NetworkUnexpectedHTTPCodeError),
        ((b"", 429, None), NetworkServerLimitedError),
        ((b"bad", 400, None), NetworkUnexpectedHTTPCodeError),
        ((b"", 503, None), NetworkServerRejectedError),
        ((b"", 0, None), NetworkServerRejectedError),
    ],
)
def test_failures_are_reported(
    client_config, batch_file, fake_session_factory, response, error_type
) -> None:
    reporter = MagicMock()
    session = fake_session_factory([response])
    client = HTTPClient(client_config, session=session, error_reporter=reporter)

    outcomes = upload(client, batch_file)

    assert len(outcomes) == 1
    reporter.assert_called_once()
    assert isinstance(reporter.call_args.args[0], error_type)


def test_success_is_not_reported(client_config, batch_file, fake_session_factory) -> None:
    reporter = MagicMock()
    client = HTTPClient(
        client_config, session=fake_session_factory(), error_reporter=reporter
    )

    outcomes = upload(client, batch_file)

    assert outcomes[0].is_success
    reporter.assert_not_called()


def test_bad_request_logs_rejected_payload(
    client_config, batch_file, fake_session_factory, caplog
) -> None:
    session = fake_session_factory([(b'{"error":"malformed"}', 400, None)])
    client = HTTPClient(client_config, session=session, error_reporter=MagicMock())

    with caplog.at_level(logging.ERROR):
        outcomes = upload(client, batch_file)

    assert outcomes[0].kind is OutcomeKind.TERMINAL
    assert "Signed Up" in caplog.text
    assert "malformed" in caplog.text


def test_unbuildable_upload_url_completes_retriable(
    client_config, batch_file, fake_session_factory
) -> None:
    reporter = MagicMock()
    session = fake_session_factory()
    config = client_config.model_copy(update={"api_host": ""})
    client = HTTPClient(config, session=session, error_reporter=reporter)
    outcomes: list[DeliveryOutcome] = []

    task = client.start_batch_upload(WRITE_KEY, batch_file, outcomes.append)

    assert task is None
    assert session.requests == []
    assert outcomes[0].kind is OutcomeKind.RETRIABLE
    assert isinstance(reporter.call_args.args[0], BatchOpenError)


def fetch_settings(client: HTTPClient):
    results = []
    task = client.settings_for(WRITE_KEY, lambda s, e: results.append((s, e)))
    if task is not None:
        task.resume()
    assert len(results) == 1
    return results[0]


def test_settings_for_decodes_settings(client_config, fake_session_factory) -> None:
    body = b'{"integrations":{"Segment.io":{"apiKey":"k"}},"plan":{"track":{}},"edgeFunction":{}}'
    session = fake_session_factory([(body, 200, None)])
    client = HTTPClient(client_config, session=session)

    settings, error = fetch_settings(client)

    assert error is None
    assert settings.integrations == {"Segment.io": {"apiKey": "k"}}
    assert settings.edge_function == {}
    request, _ = session.requests[0]
    assert request.method == "GET"
    assert request.url == (
        f"https://cdn.example.com/v1/projects/{WRITE_KEY}/settings"
    )


@pytest.mark.parametrize(
    "response, cause_type",
    [
        ((None, None, OSError("offline")), NetworkUnknownError),
        ((b"{}", 301, None), NetworkUnexpectedHTTPCodeError),
        ((b"{}", 404, None), NetworkUnexpectedHTTPCodeError),
        ((b"", 200, None), NetworkInvalidDataError),
        ((b"not json", 200, None), JsonUnableToDeserializeError),
        ((b"[1, 2]", 200, None), JsonUnableToDeserializeError),
    ],
)
def test_settings_failures_are_distinguished(
    client_config, fake_session_factory, response, cause_type
) -> None:
    reporter = MagicMock()
    client = HTTPClient(
        client_config,
        session=fake_session_factory([response]),
        error_reporter=reporter,
    )

    settings, error = fetch_settings(client)

    assert settings is None
    assert isinstance(error, SettingsFailError)
    assert isinstance(error.cause, cause_type)
    reporter.assert_called_once_with(error)


def test_settings_status_300_is_still_decoded(client_config, fake_session_factory) -> None:
    client = HTTPClient(
        client_config, session=fake_session_factory([(b"{}", 300, None)])
    )

    settings, error = fetch_settings(client)

    assert error is None
    assert settings.integrations == {}


def test_settings_with_unbuildable_url(client_config, fake_session_factory) -> None:
    config = client_config.model_copy(update={"cdn_host": ""})
    client = HTTPClient(config, session=fake_session_factory(), error_reporter=MagicMock())

    settings, error = fetch_settings(client)

    assert settings is None
    assert isinstance(error.cause, BatchOpenError)
