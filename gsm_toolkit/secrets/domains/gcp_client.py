"""Secret Manager REST client.

Builds the access, create and add-version requests and decodes their
responses. Callers validate project IDs and secret names first.
"""
import base64
import binascii
import json
import logging
from typing import Optional

from .config_loader import ClientConfig
from .context import CallContext
from .executor import RetryingExecutor
from .models import AUTOMATIC_REPLICATION, CreateOutcome, HttpRequest, SecretPayload

logger = logging.getLogger(__name__)

_COMPACT = (",", ":")


def _decode_secret_payload(status: int, body: bytes) -> SecretPayload:
    data = json.loads(body)
    payload = data.get("payload") if isinstance(data, dict) else None
    if not isinstance(payload, dict):
        raise ValueError("response has no payload object")

    encoded = payload.get("data", "")
    if not isinstance(encoded, str):
        raise ValueError("payload data is not a string")

    try:
        return SecretPayload(base64.b64decode(encoded, validate=True))
    except binascii.Error as e:
        raise ValueError(f"failed to decode secret data: {e}")


def _decode_create(status: int, body: bytes) -> CreateOutcome:
    if status == 409:
        return CreateOutcome.ALREADY_EXISTS
    return CreateOutcome.CREATED


def _decode_version_name(status: int, body: bytes) -> Optional[str]:
    # An empty acknowledgement is accepted; a non-empty one must be a JSON object
    if not body.strip():
        return None
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("acknowledgement is not a JSON object")
    return data.get("name")


class SecretManagerRestClient:
    """Thin wrapper over the Secret Manager v1 REST resources."""

    def __init__(self, executor: RetryingExecutor, config: ClientConfig):
        self._executor = executor
        self._config = config

    def _secret_url(self, project_id: str, secret_name: str) -> str:
        return f"{self._config.api_url}/projects/{project_id}/secrets/{secret_name}"

    @staticmethod
    def _auth_headers(token: str, json_body: bool = False) -> dict:
        headers = {"Authorization": f"Bearer {token}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def access_secret_version(self, ctx: CallContext, project_id: str, secret_name: str,
                              token: str) -> SecretPayload:
        """
        Read the latest version of a secret.

        Args:
            ctx: Caller's context
            project_id: Validated project ID
            secret_name: Validated secret name
            token: Bearer token from the metadata server

        Returns:
            Decoded secret payload
        """
        request = HttpRequest(
            method="GET",
            url=f"{self._secret_url(project_id, secret_name)}/versions/latest:access",
            headers=self._auth_headers(token),
            decode=_decode_secret_payload,
        )
        payload = self._executor.call(ctx, request, "access secret")
        logger.info(f"secret accessed successfully secret={secret_name} bytes={len(payload.data)}")
        return payload

    def create_secret(self, ctx: CallContext, project_id: str, secret_name: str,
                      token: str) -> CreateOutcome:
        """
        Create an empty secret with automatic replication.

        A 409 means the secret already exists and is returned as
        CreateOutcome.ALREADY_EXISTS rather than raised.
        """
        request = HttpRequest(
            method="POST",
            url=f"{self._config.api_url}/projects/{project_id}/secrets?secretId={secret_name}",
            headers=self._auth_headers(token, json_body=True),
            body=json.dumps(AUTOMATIC_REPLICATION, separators=_COMPACT).encode("utf-8"),
            decode=_decode_create,
            ok_statuses=frozenset({200, 201, 409}),
        )
        outcome = self._executor.call(ctx, request, "create secret")
        if outcome is CreateOutcome.ALREADY_EXISTS:
            logger.info(f"secret already exists, adding a version secret={secret_name}")
        else:
            logger.info(f"secret created successfully secret={secret_name}")
        return outcome

    def add_secret_version(self, ctx: CallContext, project_id: str, secret_name: str,
                           token: str, data: bytes) -> Optional[str]:
        """
        Add a new version holding `data`.

        Returns:
            Resource name of the new version when the server reports it
        """
        body = {"payload": {"data": base64.b64encode(data).decode("ascii")}}
        request = HttpRequest(
            method="POST",
            url=f"{self._secret_url(project_id, secret_name)}:addVersion",
            headers=self._auth_headers(token, json_body=True),
            body=json.dumps(body, separators=_COMPACT).encode("utf-8"),
            decode=_decode_version_name,
        )
        version_name = self._executor.call(ctx, request, "add secret version")
        logger.info(f"secret version added successfully secret={secret_name} version={version_name}")
        return version_name
