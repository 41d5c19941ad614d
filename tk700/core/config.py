from pydantic import ValidationError
from pydantic_settings import BaseSettings

from tk700.exceptions.projector import ConfigurationError


class Settings(BaseSettings):
    APP_NAME: str = "TK700 Control"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # HTTP listener
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # ---- Projector (RS232 over TCP bridge) ----
    # No discovery; both are required.
    TK700_HOST: str
    TK700_PORT: int
    # Response timeout per exchange, milliseconds.
    TK700_TIMEOUT: int = 5000
    # Connect timeout, milliseconds.
    TK700_CONNECT_TIMEOUT: int = 5000

    # Log every frame sent/received on the projector link.
    LINK_TRAFFIC_LOG: bool = False

    # Poll period for power and the gated metrics.
    POLL_INTERVAL_SEC: float = 2.0

    # Built front-end; served only if the directory exists.
    STATIC_DIR: str = "dist"

    class Config:
        env_file = ".env"
        extra = "ignore"


_ADDRESS_FIELDS = ("TK700_HOST", "TK700_PORT")


def get_settings(**overrides) -> Settings:
    """Load settings from the environment, failing fast on a missing or invalid value."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        errors = e.errors()
        invalid = [".".join(str(p) for p in err["loc"]) for err in errors]
        if all(err["type"] == "missing" and err["loc"][0] in _ADDRESS_FIELDS for err in errors):
            message = "TK700_HOST and TK700_PORT environment variables are required"
        else:
            message = "Invalid configuration: " + "; ".join(
                f"{loc}: {err['msg']}" for loc, err in zip(invalid, errors)
            )
        raise ConfigurationError(message, context={"invalid": invalid}) from e
