from typing import Protocol


class CredentialProvider(Protocol):
    def get_key(self) -> str | None: ...
