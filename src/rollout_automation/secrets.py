from __future__ import annotations

from threading import Lock
from typing import Any, Optional
import base64
import json
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import SecretResolutionError

logger = logging.getLogger(__name__)


class SecretResolver:
    """Replaces ``{aws_secret = "...", key = "..."}`` variables with their values.

    Each secret is read from AWS Secrets Manager at most once per resolver;
    hosts running in parallel share the fetched values.
    """

    def __init__(self):
        self._secrets: dict[str, str] = {}
        self._client = None
        self._lock = Lock()

    def resolve(self, values: dict[str, Any]) -> dict[str, Any]:
        return {name: self._walk(value) for name, value in values.items()}

    def _walk(self, value: Any) -> Any:
        if isinstance(value, dict):
            if "aws_secret" in value:
                return self.lookup(str(value["aws_secret"]), value.get("key"))
            return {k: self._walk(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._walk(item) for item in value]
        return value

    def lookup(self, name: str, key: Optional[Any] = None) -> Any:
        raw = self._fetch(name)
        if key is None:
            return raw
        try:
            fields = json.loads(raw)
        except json.JSONDecodeError:
            # Plain-text secrets have no fields; the key is only a label then.
            return raw
        if not isinstance(fields, dict):
            return raw
        if str(key) not in fields:
            raise SecretResolutionError(f"secret {name} has no key '{key}'")
        return fields[str(key)]

    def _fetch(self, name: str) -> str:
        with self._lock:
            if name not in self._secrets:
                logger.debug("fetching secret %s", name)
                self._secrets[name] = self._read(name)
            return self._secrets[name]

    def _read(self, name: str) -> str:
        try:
            if self._client is None:
                self._client = boto3.client("secretsmanager")
            response = self._client.get_secret_value(SecretId=name)
        except (BotoCoreError, ClientError) as exc:
            raise SecretResolutionError(f"cannot read secret {name}: {exc}") from exc
        if response.get("SecretString") is not None:
            return response["SecretString"]
        if response.get("SecretBinary") is not None:
            return base64.b64decode(response["SecretBinary"]).decode()
        raise SecretResolutionError(f"secret {name} has neither SecretString nor SecretBinary")
