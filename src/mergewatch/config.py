import logging
import os
from pathlib import Path
import re
from typing import Any, Dict, Mapping, Optional, Union

import dotenv
import pydantic
import typer
import yaml

from mergewatch.exceptions import ConfigError
from mergewatch.model import FileConfig
from mergewatch.trigger import compile_trigger

APP_NAME = "mergewatch"
APP_DIR = Path(typer.get_app_dir(APP_NAME))
DEFAULT_CONFIG_FILE = APP_DIR / "config.yml"

DEFAULT_TRIGGER = ":shipit:"
DEFAULT_RETRY_LIMIT = 5

# Settings field -> environment variable
ENV_VARS = {
    "BITBUCKET_URL": "BITBUCKET_URL",
    "BITBUCKET_API_TOKEN": "BITBUCKET_API_TOKEN",
    "MERGE_TRIGGER": "MERGEWATCH_TRIGGER",
    "CHECK_DESCRIPTION": "MERGEWATCH_CHECK_DESCRIPTION",
    "CHECK_COMMENTS": "MERGEWATCH_CHECK_COMMENTS",
    "JENKINS_USERNAME": "JENKINS_USERNAME",
    "JENKINS_PASSWORD": "JENKINS_PASSWORD",
    "JENKINS_RETRY_TRIGGER": "JENKINS_RETRY_TRIGGER",
    "JENKINS_RETRY_LIMIT": "JENKINS_RETRY_LIMIT",
    "DATA_DIR": "MERGEWATCH_DATA_DIR",
    "REQUEST_TIMEOUT": "REQUEST_TIMEOUT",
    "OVERRIDE_LOGGING": "OVERRIDE_LOGGING",
    "DRY_RUN": "DRY_RUN",
    "TELEGRAM_TOKEN": "TELEGRAM_TOKEN",
    "TELEGRAM_CHAT_ID": "TELEGRAM_CHAT_ID",
    "PUSH_GATEWAY": "PUSH_GATEWAY",
}
CONFIG_FILE_ENV_VAR = "MERGEWATCH_CONFIG"


class Settings(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True, extra="forbid")

    BITBUCKET_URL: str
    BITBUCKET_API_TOKEN: str

    MERGE_TRIGGER: str = DEFAULT_TRIGGER
    CHECK_DESCRIPTION: bool = True
    CHECK_COMMENTS: bool = False

    JENKINS_USERNAME: Optional[str] = None
    JENKINS_PASSWORD: Optional[str] = None
    JENKINS_RETRY_TRIGGER: Optional[str] = None
    JENKINS_RETRY_LIMIT: int = pydantic.Field(DEFAULT_RETRY_LIMIT, ge=0)

    DATA_DIR: Path = APP_DIR / "history"
    REQUEST_TIMEOUT: float = pydantic.Field(5.0, gt=0)
    OVERRIDE_LOGGING: str = "INFO"
    DRY_RUN: bool = False

    TELEGRAM_TOKEN: Optional[str] = None
    TELEGRAM_CHAT_ID: Optional[str] = None
    PUSH_GATEWAY: Optional[str] = None

    @pydantic.field_validator("BITBUCKET_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("Bitbucket URL must not be empty")
        return value

    @pydantic.field_validator("MERGE_TRIGGER", "JENKINS_RETRY_TRIGGER")
    @classmethod
    def validate_regex(
        cls, value: Optional[str], info: pydantic.ValidationInfo
    ) -> Optional[str]:
        if value is None:
            return value
        try:
            if info.field_name == "MERGE_TRIGGER":
                # Compiled the same way the sweep will use it
                compile_trigger(value)
            else:
                re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid regular expression {value!r}: {e}")
        return value

    @pydantic.field_validator("OVERRIDE_LOGGING")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if not isinstance(logging.getLevelName(value), int):
            raise ValueError(f"Unknown log level {value}")
        return value

    @property
    def log_level(self) -> int:
        return logging.getLevelName(self.OVERRIDE_LOGGING)

    @property
    def jenkins_enabled(self) -> bool:
        return (
            self.JENKINS_USERNAME is not None
            and self.JENKINS_PASSWORD is not None
            and self.JENKINS_RETRY_TRIGGER is not None
        )


def read_config_file(path: Path) -> FileConfig:
    try:
        with open(path) as fh:
            data = yaml.safe_load(fh)
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e

    if data is None:
        return FileConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    try:
        return FileConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid config file {path}:\n{e}") from e


def load_settings(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build the settings for one run: defaults, overridden by the YAML config
    file, overridden by environment variables. An explicitly requested config
    file has to exist, the default one is optional.
    """
    if environ is None:
        dotenv.load_dotenv()
        environ = os.environ

    if path is None and environ.get(CONFIG_FILE_ENV_VAR):
        path = environ[CONFIG_FILE_ENV_VAR]

    values: Dict[str, Any] = {}
    if path is not None:
        values.update(read_config_file(Path(path)).to_settings())
    elif DEFAULT_CONFIG_FILE.is_file():
        values.update(read_config_file(DEFAULT_CONFIG_FILE).to_settings())

    for field, var in ENV_VARS.items():
        value = environ.get(var)
        if value is not None and value != "":
            values[field] = value

    for field in ("BITBUCKET_URL", "BITBUCKET_API_TOKEN"):
        if field not in values:
            raise ConfigError(
                f"Must set {ENV_VARS[field]} environment variable "
                f"or '{field.lower().replace('_', '-')}' in the config file"
            )

    try:
        return Settings.model_validate(values)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid configuration:\n{e}") from e
