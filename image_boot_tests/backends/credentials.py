"""Resolution of backend configuration and cloud credentials."""

from dataclasses import dataclass

from pydantic import ValidationError
from pydantic_settings import BaseSettings

from image_boot_tests.exceptions import CredentialsError


@dataclass(frozen=True)
class Present[ConfigT: BaseSettings]:
    """The backend configuration could be read from the environment."""

    config: ConfigT


@dataclass(frozen=True)
class Absent:
    """None of the required settings are set: use a fallback backend."""


type ResolvedCredentials[ConfigT: BaseSettings] = Present[ConfigT] | Absent


def resolve_credentials[ConfigT: BaseSettings](
    config_cls: type[ConfigT],
) -> ResolvedCredentials[ConfigT]:
    """Read config_cls from the environment.

    A configuration without required fields is always present.

    Raises:
        CredentialsError: If only some of the required settings are set, or
            a set value is invalid

    """
    try:
        return Present(config_cls())
    except ValidationError as exc:
        errors = exc.errors()
        missing = {str(error["loc"][0]) for error in errors if error["type"] == "missing"}
        required = {
            name for name, field in config_cls.model_fields.items() if field.is_required()
        }
        if missing == required and len(missing) == len(errors):
            return Absent()

        raise CredentialsError(
            f"Incomplete {config_cls.__name__} in the environment: {exc}"
        ) from exc
