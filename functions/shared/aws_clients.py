"""
Centralized AWS client factory with lazy initialization.

Reduces cold start overhead by deferring boto3 client/resource creation
until first use. All Lambdas share the same pattern.
"""

import os

_dynamodb = None
_secretsmanager = None
_sns = None
_ses = None
_cloudwatch = None

# Outbound email must never hold the webhook response hostage
SES_CONNECT_TIMEOUT = float(os.environ.get("SES_CONNECT_TIMEOUT_SECONDS") or "2")
SES_READ_TIMEOUT = float(os.environ.get("SES_READ_TIMEOUT_SECONDS") or "5")


def get_dynamodb():
    """Get DynamoDB resource, creating it lazily on first use."""
    global _dynamodb
    if _dynamodb is None:
        import boto3
        _dynamodb = boto3.resource("dynamodb")
    return _dynamodb


def get_secretsmanager():
    """Get Secrets Manager client, creating it lazily on first use."""
    global _secretsmanager
    if _secretsmanager is None:
        import boto3
        _secretsmanager = boto3.client("secretsmanager")
    return _secretsmanager


def get_sns():
    """Get SNS client, creating it lazily on first use."""
    global _sns
    if _sns is None:
        import boto3
        _sns = boto3.client("sns")
    return _sns


def get_ses():
    """Get SES client with bounded timeouts and a single attempt."""
    global _ses
    if _ses is None:
        import boto3
        from botocore.config import Config

        _ses = boto3.client(
            "ses",
            config=Config(
                connect_timeout=SES_CONNECT_TIMEOUT,
                read_timeout=SES_READ_TIMEOUT,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
    return _ses


def get_cloudwatch():
    """Get CloudWatch client, creating it lazily on first use."""
    global _cloudwatch
    if _cloudwatch is None:
        import boto3
        _cloudwatch = boto3.client("cloudwatch")
    return _cloudwatch


def reset_clients():
    """Reset all cached clients. Used in tests for clean state."""
    global _dynamodb, _secretsmanager, _sns, _ses, _cloudwatch
    _dynamodb = None
    _secretsmanager = None
    _sns = None
    _ses = None
    _cloudwatch = None
