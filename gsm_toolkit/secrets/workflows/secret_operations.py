"""Fetch and store workflows composed from the metadata resolver and REST client."""
import logging
import threading
from typing import Optional, Union

from ..domains.config_loader import ClientConfig, load_config
from ..domains.context import CallContext
from ..domains.errors import SecretManagerError
from ..domains.executor import RetryingExecutor
from ..domains.gcp_client import SecretManagerRestClient
from ..domains.metadata import MetadataResolver
from ..domains.validators import validate_project_id, validate_secret_name

logger = logging.getLogger(__name__)


class SecretOperations:
    """
    The four secret operations bound to one ClientConfig.

    Instances share nothing but their own pooled HTTP session, so tests and
    callers can run several side by side against different endpoints.
    """

    def __init__(self, config: Optional[ClientConfig] = None, executor: Optional[RetryingExecutor] = None):
        self.config = config or ClientConfig()
        self.executor = executor or RetryingExecutor(self.config)
        self.metadata = MetadataResolver(self.executor, self.config)
        self.api = SecretManagerRestClient(self.executor, self.config)

    def close(self) -> None:
        self.executor.close()

    def fetch(self, secret_name: str, ctx: Optional[CallContext] = None) -> str:
        """
        Fetch the latest version of a secret from the current project.

        The project ID is resolved from the metadata server.
        """
        ctx = ctx or CallContext.background()
        validate_secret_name(secret_name)
        project_id = self.metadata.project_id(ctx)
        return self.fetch_from_project(project_id, secret_name, ctx)

    def fetch_from_project(self, project_id: str, secret_name: str,
                           ctx: Optional[CallContext] = None) -> str:
        """
        Fetch the latest version of a secret from a specific project.

        Args:
            project_id: GCP project ID
            secret_name: Name of the secret
            ctx: Cancellation/deadline context (never done if omitted)

        Returns:
            Secret value as UTF-8 text

        Raises:
            InvalidArgument: Bad project ID or secret name; no request is sent
            AuthFailure: Token could not be fetched
            ClientError: 4xx from Secret Manager (NotFound, PermissionDenied, ...)
            TransientFailure: Every attempt failed with a retryable error
            Cancelled: The context finished first
        """
        ctx = ctx or CallContext.background()
        validate_project_id(project_id)
        validate_secret_name(secret_name)

        token = self.metadata.access_token(ctx)
        payload = self.api.access_secret_version(ctx, project_id, secret_name, token)
        try:
            return payload.text()
        except UnicodeDecodeError as e:
            raise SecretManagerError("failed to access secret: payload is not valid UTF-8") from e

    def store(self, secret_name: str, value: Union[str, bytes],
              ctx: Optional[CallContext] = None) -> None:
        """
        Create or update a secret in the current project.

        The project ID is resolved from the metadata server.
        """
        ctx = ctx or CallContext.background()
        validate_secret_name(secret_name)
        project_id = self.metadata.project_id(ctx)
        self.store_in_project(project_id, secret_name, value, ctx)

    def store_in_project(self, project_id: str, secret_name: str, value: Union[str, bytes],
                         ctx: Optional[CallContext] = None) -> None:
        """
        Create or update a secret in a specific project.

        Runs two phases in order:
        1. Create the secret (an existing secret is fine)
        2. Add a new version holding `value`

        Every successful call adds exactly one version. A failure in phase 2
        leaves the secret created in phase 1 in place; calling store again
        is the way to recover.

        Args:
            project_id: GCP project ID
            secret_name: Name of the secret
            value: Plaintext; str is encoded as UTF-8
            ctx: Cancellation/deadline context (never done if omitted)
        """
        ctx = ctx or CallContext.background()
        validate_project_id(project_id)
        validate_secret_name(secret_name)

        data = value.encode("UTF-8") if isinstance(value, str) else bytes(value)

        token = self.metadata.access_token(ctx)
        self.api.create_secret(ctx, project_id, secret_name, token)
        self.api.add_secret_version(ctx, project_id, secret_name, token, data)


# Lazy loading: the default instance is built on first use, so importing
# this module never reads config files
_default_operations: Optional[SecretOperations] = None
_default_lock = threading.Lock()


def _get_default_operations() -> SecretOperations:
    global _default_operations

    with _default_lock:
        if _default_operations is None:
            _default_operations = SecretOperations(load_config())
        return _default_operations


def fetch_secret(secret_name: str, ctx: Optional[CallContext] = None) -> str:
    """Fetch a secret from the project this instance runs in."""
    return _get_default_operations().fetch(secret_name, ctx)


def fetch_secret_from_project(project_id: str, secret_name: str,
                              ctx: Optional[CallContext] = None) -> str:
    """Fetch a secret from `project_id`."""
    return _get_default_operations().fetch_from_project(project_id, secret_name, ctx)


def store_secret(secret_name: str, value: Union[str, bytes],
                 ctx: Optional[CallContext] = None) -> None:
    """Store a secret in the project this instance runs in."""
    _get_default_operations().store(secret_name, value, ctx)


def store_secret_in_project(project_id: str, secret_name: str, value: Union[str, bytes],
                            ctx: Optional[CallContext] = None) -> None:
    """Store a secret in `project_id`."""
    _get_default_operations().store_in_project(project_id, secret_name, value, ctx)
