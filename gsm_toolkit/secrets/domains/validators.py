"""Syntax checks for project IDs and secret names."""
import re

from .errors import InvalidArgument

PROJECT_ID_PATTERN = re.compile(r'^[a-z][a-z0-9-]{4,28}[a-z0-9]$')
SECRET_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{1,255}$')


def is_valid_project_id(project_id: str) -> bool:
    return isinstance(project_id, str) and PROJECT_ID_PATTERN.fullmatch(project_id) is not None


def is_valid_secret_name(secret_name: str) -> bool:
    return isinstance(secret_name, str) and SECRET_NAME_PATTERN.fullmatch(secret_name) is not None


def validate_project_id(project_id: str) -> None:
    """
    Validate a GCP project ID before it is placed in any URL.

    Project IDs are 6-30 characters: a lowercase letter first, then lowercase
    letters, digits or hyphens, and no trailing hyphen.

    Raises:
        InvalidArgument: If the project ID does not match
    """
    if not is_valid_project_id(project_id):
        raise InvalidArgument(f"invalid project ID format: {project_id!r}")


def validate_secret_name(secret_name: str) -> None:
    """
    Validate a secret name before it is placed in any URL.

    Secret Manager allows 1-255 characters from [a-zA-Z0-9_-].

    Raises:
        InvalidArgument: If the secret name does not match
    """
    if not is_valid_secret_name(secret_name):
        raise InvalidArgument(f"invalid secret name format: {secret_name!r}")
