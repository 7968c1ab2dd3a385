from pathlib import Path
from typing import Any, Dict, Optional

import pydantic


class Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="forbid", populate_by_name=True)


class FileConfig(Model):
    """Contents of the YAML configuration file. Every key is optional."""

    bitbucket_url: Optional[str] = pydantic.Field(None, alias="bitbucket-url")
    bitbucket_api_token: Optional[str] = pydantic.Field(
        None, alias="bitbucket-api-token"
    )

    merge_trigger: Optional[str] = pydantic.Field(None, alias="merge-trigger")
    check_description: Optional[bool] = pydantic.Field(
        None, alias="check-description"
    )
    check_comments: Optional[bool] = pydantic.Field(None, alias="check-comments")

    jenkins_username: Optional[str] = pydantic.Field(None, alias="jenkins-username")
    jenkins_password: Optional[str] = pydantic.Field(None, alias="jenkins-password")
    jenkins_retry_trigger: Optional[str] = pydantic.Field(
        None, alias="jenkins-retry-trigger"
    )
    jenkins_retry_limit: Optional[int] = pydantic.Field(
        None, alias="jenkins-retry-limit"
    )

    data_dir: Optional[Path] = pydantic.Field(None, alias="data-dir")
    request_timeout: Optional[float] = pydantic.Field(None, alias="request-timeout")
    log_level: Optional[str] = pydantic.Field(None, alias="log-level")
    dry_run: Optional[bool] = pydantic.Field(None, alias="dry-run")

    telegram_token: Optional[str] = pydantic.Field(None, alias="telegram-token")
    telegram_chat_id: Optional[str] = pydantic.Field(None, alias="telegram-chat-id")
    push_gateway: Optional[str] = pydantic.Field(None, alias="push-gateway")

    def to_settings(self) -> Dict[str, Any]:
        values = {}
        for name, value in self.model_dump(exclude_none=True).items():
            if name == "log_level":
                values["OVERRIDE_LOGGING"] = value
            else:
                values[name.upper()] = value
        return values
