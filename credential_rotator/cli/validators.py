"""Input validation for CLI arguments."""
import re
import sys

from credential_rotator.rotation.domains.models import STEPS


def validate_secret_id(secret_id: str) -> None:
    """
    Validate a secret name or ARN.

    Secrets Manager names allow: letters, digits and /_+=.@-

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not secret_id:
        print("Error: Secret id cannot be empty", file=sys.stderr)
        sys.exit(2)

    if secret_id.startswith("arn:"):
        return

    pattern = r'^[a-zA-Z0-9/_+=.@-]+$'
    if not re.match(pattern, secret_id):
        print(f"Error: Invalid secret id '{secret_id}'", file=sys.stderr)
        print("\nAllowed characters: letters, numbers, and /_+=.@-", file=sys.stderr)
        print("A full secret ARN (arn:aws:secretsmanager:...) is also accepted.", file=sys.stderr)
        sys.exit(2)


def validate_token(token: str) -> None:
    """
    Validate a client request token, which becomes the new secret version id.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not token or not token.strip():
        print("Error: Client request token cannot be empty", file=sys.stderr)
        sys.exit(2)
    if not 32 <= len(token) <= 64:
        print(f"Error: Client request token must be 32-64 characters, got {len(token)}", file=sys.stderr)
        print("\nTip: use a UUID, e.g. the output of 'uuidgen'.", file=sys.stderr)
        sys.exit(2)


def validate_step(step: str) -> None:
    """
    Validate a rotation step name.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if step not in STEPS:
        print(f"Error: Invalid step '{step}'", file=sys.stderr)
        print(f"\nValid steps, in order: {', '.join(STEPS)}", file=sys.stderr)
        sys.exit(2)
