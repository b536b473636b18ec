from __future__ import annotations

import boto3

from ..config import AWS_REGION, TABLE_NAME
from ..errors import ConfigError

_ddb = None
_secrets = None


def ddb():
    global _ddb
    if _ddb is None:
        _ddb = boto3.resource("dynamodb", region_name=AWS_REGION)
    return _ddb


def secrets():
    global _secrets
    if _secrets is None:
        _secrets = boto3.client("secretsmanager", region_name=AWS_REGION)
    return _secrets


def table(name: str | None = None):
    name = name or TABLE_NAME
    if not name:
        raise ConfigError("TABLE_NAME is not set")
    return ddb().Table(name)
