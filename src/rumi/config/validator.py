"""Validation utilities for rumi settings and registry files."""

from pydantic import ValidationError as PydanticValidationError

# Values of these fields are never echoed back in error messages
SECRET_FIELDS = frozenset({"password", "passphrase"})

# Discriminator values of the deployment profile union
_PROFILE_TAGS = frozenset({"website", "server", "ethereum_node"})


def _field_path(loc: tuple) -> str:
    parts = [str(item) for item in loc]
    # profile errors carry the union tag: profile.server.port -> profile.port
    if len(parts) > 1 and parts[0] == "profile" and parts[1] in _PROFILE_TAGS:
        del parts[1]
    return ".".join(parts) if parts else "unknown"


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into human-readable messages.

    Args:
        exc: Pydantic ValidationError exception

    Returns:
        List of messages, one per field error, each naming the field path

    Example:
        >>> from rumi.models.settings import HostConfig
        >>> try:
        ...     HostConfig(host="example.com", port=0)
        ... except PydanticValidationError as e:
        ...     flatten_pydantic_errors(e)[0].startswith("Field 'port'")
        True
    """
    errors: list[str] = []

    for error in exc.errors():
        loc = tuple(error.get("loc", ()))
        field_path = _field_path(loc)
        msg = error.get("msg", "Unknown error")

        if error.get("type") == "value_error" and not SECRET_FIELDS.intersection(
            str(item) for item in loc
        ):
            errors.append(f"Field '{field_path}': {msg} (received: {error.get('input')!r})")
        else:
            errors.append(f"Field '{field_path}': {msg}")

    return errors or ["Validation failed with unknown error"]
