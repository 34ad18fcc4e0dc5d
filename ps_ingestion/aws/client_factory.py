"""Boto3 client factory with explicit-credential handling.

If AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY are set, use them;
otherwise use the default boto3 credential provider (SSO, role, etc.).
"""

import os
from typing import Any

from botocore.config import Config

from ps_ingestion.config import settings


def get_boto3_client_kwargs(service: str = "lambda") -> dict[str, Any]:
    """Return kwargs for boto3.client() so that explicit credentials are used only when set.

    Lambda clients get a read timeout above the longest stage timeout and no
    botocore-level retries: retrying is the orchestrator's job.

    Args:
        service: Service name for boto3 (e.g. 'lambda', 'sns', 'dynamodb').

    Returns:
        Dict with at least 'region_name'. May include 'aws_access_key_id',
        'aws_secret_access_key' and a botocore 'config'.
    """
    kwargs: dict[str, Any] = {
        "region_name": settings.aws.region,
    }
    access_key = os.environ.get("AWS_ACCESS_KEY_ID", "").strip()
    secret_key = os.environ.get("AWS_SECRET_ACCESS_KEY", "").strip()
    if access_key and secret_key:
        kwargs["aws_access_key_id"] = access_key
        kwargs["aws_secret_access_key"] = secret_key
    if service == "lambda":
        kwargs["config"] = Config(
            read_timeout=settings.aws.read_timeout,
            retries={"max_attempts": 0},
        )
    return kwargs
