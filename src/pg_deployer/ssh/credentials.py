"""SSH credential helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class SSHCredentials:
    """Normalized credential payload for one cluster host."""

    host: str
    username: str
    port: int = 22
    auth_method: str = "key"
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: int = 20

    def validate(self) -> None:
        if self.auth_method == "password" and not self.password:
            raise ValueError("Password authentication selected but no password provided")
        if self.auth_method == "key" and not self.key_path:
            raise ValueError("Key authentication selected but no key_path provided")

    @classmethod
    def for_host(cls, host: str, username: str, port: int, key_path: Optional[str]) -> "SSHCredentials":
        return cls(
            host=host,
            username=username,
            port=port,
            auth_method="key",
            key_path=os.path.expanduser(key_path) if key_path else None,
        )
