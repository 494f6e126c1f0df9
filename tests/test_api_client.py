"""
Tests for the HTTP login boundary.
"""

from unittest.mock import Mock

import pytest
import requests

from services.api_client import CaseDeskAPIError, CaseDeskClient, ConnectionFailed, LoginRejected


def response(status, body):
    resp = Mock()
    resp.status_code = status
    resp.ok = status < 400
    resp.json.return_value = body
    return resp


@pytest.fixture
def http():
    return Mock(spec=requests.Session)


def test_username_login_posts_with_timeout(http):
    http.post.return_value = response(200, {"message": "ok", "data": {"id": 1}})
    client = CaseDeskClient("http://api.local/", timeout=12, session=http)

    assert client.login("jdoe", "pw") == {"id": 1}
    http.post.assert_called_once_with(
        "http://api.local/api/auth/login",
        json={"username": "jdoe", "password": "pw"},
        timeout=12,
    )


def test_email_identifier_is_sent_as_email(http):
    http.post.return_value = response(200, {"data": {"id": 2}})
    CaseDeskClient("http://api.local", session=http).login("ana@example.com", "pw")

    assert http.post.call_args.kwargs["json"] == {"email": "ana@example.com", "password": "pw"}


def test_error_status_carries_server_message(http):
    http.post.return_value = response(403, {"error": "This account has been disabled."})

    with pytest.raises(LoginRejected) as exc:
        CaseDeskClient("http://api.local", session=http).login("jdoe", "pw")

    assert exc.value.status == 403
    assert exc.value.message == "This account has been disabled."


def test_error_without_json_body_gets_generic_message(http):
    resp = response(502, None)
    resp.json.side_effect = ValueError("no json")
    http.post.return_value = resp

    with pytest.raises(LoginRejected) as exc:
        CaseDeskClient("http://api.local", session=http).login("jdoe", "pw")

    assert exc.value.message == "Unable to sign in."


def test_timeout_becomes_connection_failure(http):
    http.post.side_effect = requests.exceptions.Timeout()

    with pytest.raises(ConnectionFailed) as exc:
        CaseDeskClient("http://api.local", session=http).login("jdoe", "pw")

    assert exc.value.status is None


def test_unreachable_server(http):
    http.post.side_effect = requests.exceptions.ConnectionError()

    with pytest.raises(ConnectionFailed):
        CaseDeskClient("http://api.local", session=http).login("jdoe", "pw")


def test_success_without_data_is_rejected(http):
    http.post.return_value = response(200, {"message": "ok"})

    with pytest.raises(CaseDeskAPIError):
        CaseDeskClient("http://api.local", session=http).login("jdoe", "pw")
