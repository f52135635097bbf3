"""Shared Stripe secret retrieval for the billing handlers."""

import json
import logging
import os
import time

from botocore.exceptions import ClientError

from shared.aws_clients import get_secretsmanager

logger = logging.getLogger(__name__)

STRIPE_SECRET_ARN = os.environ.get("STRIPE_SECRET_ARN")
STRIPE_WEBHOOK_SECRET_ARN = os.environ.get("STRIPE_WEBHOOK_SECRET_ARN")

# Cached Stripe secrets with TTL
_stripe_secrets_cache: tuple[str | None, str | None] = (None, None)
_stripe_secrets_cache_time = 0.0
STRIPE_SECRETS_CACHE_TTL = 300  # 5 minutes


def _read_secret(arn: str, json_field: str) -> str | None:
    """Read a secret that is either a plain string or a JSON object."""
    try:
        response = get_secretsmanager().get_secret_value(SecretId=arn)
    except ClientError as e:
        logger.error(f"Failed to retrieve secret {json_field}: {e}")
        return None

    secret_value = response.get("SecretString", "")
    try:
        secret_json = json.loads(secret_value)
    except json.JSONDecodeError:
        return secret_value or None
    if isinstance(secret_json, dict):
        return secret_json.get(json_field) or None
    return secret_value or None


def get_stripe_secrets() -> tuple[str | None, str | None]:
    """Retrieve Stripe API key and webhook secret (cached with TTL).

    Secrets Manager ARNs take precedence; STRIPE_SECRET_KEY and
    STRIPE_WEBHOOK_SECRET are used when no ARN is configured.
    """
    global _stripe_secrets_cache, _stripe_secrets_cache_time

    if _stripe_secrets_cache[0] and (time.time() - _stripe_secrets_cache_time) < STRIPE_SECRETS_CACHE_TTL:
        return _stripe_secrets_cache

    secret_arn = os.environ.get("STRIPE_SECRET_ARN") or STRIPE_SECRET_ARN
    webhook_arn = os.environ.get("STRIPE_WEBHOOK_SECRET_ARN") or STRIPE_WEBHOOK_SECRET_ARN

    if secret_arn:
        api_key = _read_secret(secret_arn, "key")
    else:
        api_key = os.environ.get("STRIPE_SECRET_KEY") or None

    if webhook_arn:
        webhook_secret = _read_secret(webhook_arn, "secret")
    else:
        webhook_secret = os.environ.get("STRIPE_WEBHOOK_SECRET") or None

    _stripe_secrets_cache = (api_key, webhook_secret)
    _stripe_secrets_cache_time = time.time()
    return api_key, webhook_secret


def get_stripe_api_key() -> str | None:
    """Retrieve the Stripe API key only."""
    return get_stripe_secrets()[0]


def clear_stripe_secrets_cache() -> None:
    """Drop cached secrets. Used in tests and after key rotation."""
    global _stripe_secrets_cache, _stripe_secrets_cache_time
    _stripe_secrets_cache = (None, None)
    _stripe_secrets_cache_time = 0.0
