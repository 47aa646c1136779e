"""Project ID and access token lookups against the GCE metadata server."""
import json
import logging

from .config_loader import ClientConfig
from .context import CallContext
from .errors import AuthFailure
from .executor import RetryingExecutor
from .models import HttpRequest

logger = logging.getLogger(__name__)

METADATA_HEADERS = {"Metadata-Flavor": "Google"}


def _decode_project_id(status: int, body: bytes) -> str:
    project_id = body.decode("utf-8").strip()
    if not project_id:
        raise ValueError("empty project ID")
    return project_id


def _decode_access_token(status: int, body: bytes) -> str:
    data = json.loads(body)
    token = data.get("access_token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token:
        raise ValueError("empty access token")
    return token


class MetadataResolver:
    """Resolves the current project and a bearer token for the default service account."""

    def __init__(self, executor: RetryingExecutor, config: ClientConfig):
        self._executor = executor
        self._config = config

    def project_id(self, ctx: CallContext) -> str:
        """
        Fetch the project ID of the instance this process runs on.

        Raises:
            AuthFailure: If every attempt failed
            ClientError: If the metadata server answered 4xx
            Cancelled: If the context finished first
        """
        request = HttpRequest(
            method="GET",
            url=f"{self._config.metadata_url}/project/project-id",
            headers=dict(METADATA_HEADERS),
            decode=_decode_project_id,
        )
        project_id = self._executor.call(ctx, request, "get project ID", exhausted_error=AuthFailure)
        logger.info(f"fetched project ID from metadata server project_id={project_id}")
        return project_id

    def access_token(self, ctx: CallContext) -> str:
        """
        Fetch an access token for the default service account.

        The token is never cached; each top-level operation fetches its own.
        """
        request = HttpRequest(
            method="GET",
            url=f"{self._config.metadata_url}/instance/service-accounts/default/token",
            headers=dict(METADATA_HEADERS),
            decode=_decode_access_token,
        )
        token = self._executor.call(ctx, request, "get access token", exhausted_error=AuthFailure)
        logger.debug("fetched access token from metadata server")
        return token
