import pytest
from flask import Flask

from ytrssil.auth import api_auth_guard, page_auth_guard


@pytest.fixture
def api_client():
    app = Flask(__name__)
    app.before_request(api_auth_guard("token"))

    @app.route("/")
    def index():
        return "OK"

    return app.test_client()


@pytest.fixture
def page_client():
    app = Flask(__name__)
    app.before_request(page_auth_guard("token"))

    @app.route("/")
    def index():
        return "OK"

    return app.test_client()


def test_successful_authentication(api_client):
    response = api_client.get("/", headers={"Authorization": "token"})
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "OK"


def test_missing_authorization_header(api_client):
    response = api_client.get("/")
    assert response.status_code == 401
    assert response.get_data(as_text=True) == '{"error":"missing Authorization header"}'


def test_wrong_credentials(api_client):
    response = api_client.get("/", headers={"Authorization": "placeholder"})
    assert response.status_code == 401
    assert response.get_data(as_text=True) == '{"error":"invalid auth token"}'


def test_repeated_authorization_header_counts_as_missing(api_client):
    response = api_client.get(
        "/", headers=[("Authorization", "token"), ("Authorization", "token")]
    )
    assert response.status_code == 401
    assert response.get_json() == {"error": "missing Authorization header"}


def test_page_guard_redirects_without_cookie(page_client):
    response = page_client.get("/")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/auth")


def test_page_guard_redirects_with_wrong_cookie(page_client):
    response = page_client.get("/", headers={"Cookie": "token=placeholder"})
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/auth")


def test_page_guard_passes_with_matching_cookie(page_client):
    response = page_client.get("/", headers={"Cookie": "token=token"})
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "OK"