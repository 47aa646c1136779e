"""Input validation for CLI arguments."""
import sys
from typing import Optional

from gsm_toolkit.secrets.domains.validators import is_valid_project_id, is_valid_secret_name


def validate_secret_name(name: str) -> None:
    """
    Exit with code 2 unless `name` is a valid secret name.

    Secret Manager allows 1-255 characters from [a-zA-Z0-9_-].
    """
    if not name:
        print("Error: Secret name cannot be empty", file=sys.stderr)
        print("\nSecret names must match: [a-zA-Z0-9_-]{1,255}", file=sys.stderr)
        sys.exit(2)

    if not is_valid_secret_name(name):
        print(f"Error: Invalid secret name '{name}'", file=sys.stderr)
        print("\nAllowed characters: letters, numbers, underscores (_), hyphens (-)", file=sys.stderr)
        print("Maximum length: 255 characters", file=sys.stderr)
        print("\nExamples of valid names:", file=sys.stderr)
        print("  ✓ MY_SECRET", file=sys.stderr)
        print("  ✓ api-key-prod", file=sys.stderr)
        print("\nExamples of invalid names:", file=sys.stderr)
        print("  ✗ api.key (contains dot)", file=sys.stderr)
        print("  ✗ MY SECRET (contains space)", file=sys.stderr)
        sys.exit(2)


def validate_project_id(project_id: Optional[str]) -> None:
    """
    Exit with code 2 if an explicit project ID is malformed.

    None means "auto-detect" and is accepted.
    """
    if project_id is None:
        return

    if not is_valid_project_id(project_id):
        print(f"Error: Invalid project ID '{project_id}'", file=sys.stderr)
        print("\nProject IDs are 6-30 characters: a lowercase letter first, then", file=sys.stderr)
        print("lowercase letters, digits or hyphens, not ending with a hyphen.", file=sys.stderr)
        sys.exit(2)


def validate_secret_value(value: Optional[str]) -> None:
    """
    Exit with code 2 if the secret value is empty.

    Secret Manager does not allow empty secret payloads.
    """
    if not value or value.strip() == "":
        print("Error: Secret value cannot be empty", file=sys.stderr)
        print("\nSecret Manager does not allow empty secret payloads.", file=sys.stderr)
        sys.exit(2)
