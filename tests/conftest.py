"""Shared fixtures: a local HTTP server standing in for both the metadata
server and the Secret Manager API."""
import base64
import json
from pathlib import Path

import pytest
from werkzeug import Response

from gsm_toolkit.secrets.domains import config_loader, preferences
from gsm_toolkit.secrets.domains.config_loader import ClientConfig
from gsm_toolkit.secrets.workflows.secret_operations import SecretOperations

PROJECT_ID = "test-project"
SECRET_NAME = "test-secret"
TOKEN = "test-token"

METADATA_PREFIX = "/computeMetadata/v1"
API_PREFIX = "/v1"
PROJECT_ID_PATH = f"{METADATA_PREFIX}/project/project-id"
TOKEN_PATH = f"{METADATA_PREFIX}/instance/service-accounts/default/token"


def access_path(project_id=PROJECT_ID, secret_name=SECRET_NAME):
    return f"{API_PREFIX}/projects/{project_id}/secrets/{secret_name}/versions/latest:access"


def create_path(project_id=PROJECT_ID):
    return f"{API_PREFIX}/projects/{project_id}/secrets"


def add_version_path(project_id=PROJECT_ID, secret_name=SECRET_NAME):
    return f"{API_PREFIX}/projects/{project_id}/secrets/{secret_name}:addVersion"


def secret_response(value, status=200):
    encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return Response(json.dumps({"payload": {"data": encoded}}), status=status,
                    content_type="application/json")


def json_response(data, status=200):
    return Response(json.dumps(data), status=status, content_type="application/json")


class Sequence:
    """Request handler serving `responses` in order, repeating the last one."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0
        self.requests = []

    def __call__(self, request):
        # Cache the body before the request is torn down
        request.get_data()
        self.requests.append(request)
        response = self.responses[min(self.calls, len(self.responses) - 1)]
        self.calls += 1
        return response


@pytest.fixture
def client_config(httpserver):
    """Config pointing both endpoints at the local server with a 10ms retry delay."""
    return ClientConfig(
        metadata_url=httpserver.url_for(METADATA_PREFIX),
        api_url=httpserver.url_for(API_PREFIX),
        retry_delay=0.01,
    )


@pytest.fixture
def operations(client_config):
    ops = SecretOperations(client_config)
    yield ops
    ops.close()


@pytest.fixture
def serve_project_id(httpserver):
    def _serve(project_id=PROJECT_ID):
        httpserver.expect_request(
            PROJECT_ID_PATH, headers={"Metadata-Flavor": "Google"}
        ).respond_with_data(project_id)
    return _serve


@pytest.fixture
def serve_token(httpserver):
    def _serve(token=TOKEN):
        httpserver.expect_request(
            TOKEN_PATH, headers={"Metadata-Flavor": "Google"}
        ).respond_with_json({"access_token": token, "expires_in": 3599, "token_type": "Bearer"})
    return _serve


@pytest.fixture
def temp_home(tmp_path, monkeypatch):
    """Fixture to create a temporary home directory for config and preferences."""
    fake_home = tmp_path / "home"
    fake_home.mkdir()
    monkeypatch.setenv("HOME", str(fake_home))
    monkeypatch.setattr(Path, "home", lambda: fake_home)

    fake_config_dir = fake_home / ".config" / "gsm-toolkit"
    monkeypatch.setattr(preferences, "PREFERENCES_DIR", fake_config_dir)
    monkeypatch.setattr(preferences, "PREFERENCES_FILE", fake_config_dir / "preferences.json")
    monkeypatch.setattr(config_loader, "DEFAULT_CONFIG_PATH", fake_config_dir / "config.yml")
    monkeypatch.delenv(config_loader.ENV_METADATA_URL, raising=False)
    monkeypatch.delenv(config_loader.ENV_API_URL, raising=False)

    return fake_home
