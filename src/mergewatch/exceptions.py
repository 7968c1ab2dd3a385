from typing import Optional


class MergewatchError(Exception):
    pass


class ConfigError(MergewatchError):
    """Invalid or incomplete configuration. Fatal for the whole run."""


class ApiError(MergewatchError):
    status: Optional[int]
    url: Optional[str]

    def __init__(self, *args, **kwargs):
        self.status = kwargs.pop("status", None)
        self.url = kwargs.pop("url", None)
        super().__init__(*args, **kwargs)


class MergeError(MergewatchError):
    url: Optional[str]

    def __init__(self, *args, **kwargs):
        self.url = kwargs.pop("url", None)
        super().__init__(*args, **kwargs)


class NoAuthorError(MergewatchError):
    pass


class CorruptRecordError(MergewatchError):
    key: str

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Retry history for {key} could not be decoded")


class StorageError(MergewatchError):
    pass
