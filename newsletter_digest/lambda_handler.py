"""HTTP entry point for Newsletter Digest (Lambda / Netlify style events)."""

import base64
import json
import os
import time
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

import boto3
from botocore.exceptions import ClientError

from .aggregator import FeedAggregator
from .classify import DigestClassifier
from .config import Config, resolve_focus_area
from .errors import RequestMalformed
from .fetcher import BoundedFetcher
from .llm import create_chat_client
from .logging_config import create_execution_logger, setup_structured_logging
from .models import Source
from .pipeline import DigestPipeline, failure_result
from .rss import FeedProcessor

setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Content-Type": "application/json",
}


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Handle one digest request.

    Args:
        event: HTTP event with ``httpMethod`` and a JSON ``body``
        context: Lambda context object

    Returns:
        Response dictionary with status code, CORS headers and JSON body
    """
    method = (
        event.get("httpMethod")
        or ((event.get("requestContext") or {}).get("http") or {}).get("method")
        or ""
    ).upper()
    if method == "OPTIONS":
        return {"statusCode": 200, "headers": dict(CORS_HEADERS), "body": ""}
    if method != "POST":
        return _response(405, {"error": "Method not allowed"})

    execution_id = f"digest_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = create_execution_logger("main", execution_id)
    main_logger.log_execution_start(
        lambda_request_id=getattr(context, "aws_request_id", "unknown"),
        lambda_function_name=getattr(context, "function_name", "unknown"),
    )
    started = time.monotonic()
    config = None

    try:
        config = Config()
        request = parse_request(event, config)
        main_logger.info(
            f"Processing {len(request['sources'])} sources",
            source_count=len(request["sources"]),
            focus_area=request["focus_area"],
        )
        pipeline = build_pipeline(config, execution_id)
        result = pipeline.run(request["sources"], request["focus_area"])
    except Exception as e:
        main_logger.error(
            f"Critical error in handler: {e}", error=str(e), error_type=type(e).__name__
        )
        result = failure_result(e, int((time.monotonic() - started) * 1000))

    metrics = {
        "total_items": result.total_items,
        "used_fallback": result.used_fallback,
        "fallback_reason": result.fallback_reason,
        "processing_time_ms": result.processing_time_ms,
        "success": result.success,
    }
    main_logger.log_metrics(metrics)
    if config is not None and config.cloudwatch_namespace:
        send_cloudwatch_metrics(
            metrics, config.cloudwatch_namespace, config.aws_region, execution_id
        )
    main_logger.log_execution_end(success=result.success, metrics=metrics)

    return _response(200 if result.success else 500, result.to_dict())


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": dict(CORS_HEADERS),
        "body": json.dumps(body, ensure_ascii=False),
    }


def parse_request(event: dict[str, Any], config: Config) -> dict[str, Any]:
    """Decode the request body into sources and a focus area.

    Raises:
        RequestMalformed: If the body is not a JSON object or a field has
            the wrong shape
    """
    body = event.get("body") or ""
    if body and event.get("isBase64Encoded"):
        try:
            body = base64.b64decode(body).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise RequestMalformed(f"Invalid base64 body: {e}") from e

    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")

    if not body.strip():
        payload: dict[str, Any] = {}
    else:
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise RequestMalformed(f"Request body is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise RequestMalformed("Request body must be a JSON object")

    focus_area = payload.get("focusArea")
    if focus_area is not None and not isinstance(focus_area, str):
        raise RequestMalformed("focusArea must be a string")

    sources = _parse_sources(payload.get("sources"), "sources")
    if sources is None:
        sources = _parse_sources(payload.get("rssUrls"), "rssUrls")
    if sources is None:
        sources = config.get_default_sources()

    return {"sources": sources, "focus_area": resolve_focus_area(focus_area)}


def _parse_sources(value: Any, field_name: str) -> list[Source] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise RequestMalformed(f"{field_name} must be a list")

    sources = []
    for entry in value:
        if isinstance(entry, str):
            url = entry.strip()
            name = urlparse(url).netloc or url
        elif isinstance(entry, dict):
            url = entry.get("rssUrl") or entry.get("feedUrl") or entry.get("url")
            if not isinstance(url, str) or not url.strip():
                raise RequestMalformed(f"{field_name} entry is missing rssUrl")
            url = url.strip()
            name = entry.get("name") or urlparse(url).netloc or url
        else:
            raise RequestMalformed(f"{field_name} entries must be strings or objects")
        if not url:
            raise RequestMalformed(f"{field_name} entry has an empty URL")
        sources.append(Source(name=str(name), feed_url=url))
    return sources


def build_pipeline(config: Config, execution_id: str) -> DigestPipeline:
    """Wire the pipeline components for one invocation."""
    fetch_config = config.get_fetch_config()
    llm_config = config.get_llm_config()

    aggregator = FeedAggregator(
        BoundedFetcher(timeout=fetch_config.timeout, execution_id=execution_id),
        FeedProcessor(
            entries_per_feed=fetch_config.entries_per_feed, execution_id=execution_id
        ),
        max_items=fetch_config.max_items,
        cache_bust=fetch_config.cache_bust,
        execution_id=execution_id,
    )

    api_key = None
    if llm_config.provider != "bedrock":
        api_key = get_llm_api_key(config, execution_id)
    client = create_chat_client(llm_config, api_key)
    classifier = (
        DigestClassifier(client, llm_config, execution_id=execution_id)
        if client is not None
        else None
    )

    return DigestPipeline(
        aggregator,
        classifier,
        config.get_pipeline_config(),
        execution_id=execution_id,
    )


def get_llm_api_key(config: Config, execution_id: str) -> str | None:
    """
    Resolve the model provider API key.

    The ``GROQ_API_KEY``/``LLM_API_KEY`` environment variable wins; otherwise
    the key is read from AWS Secrets Manager when a secret name is set.
    Supports plain string and JSON secrets. The key itself is never logged.

    Returns:
        The API key, or None when none is configured or retrievable
    """
    secrets_logger = create_execution_logger("secrets_manager", execution_id)

    if config.llm_api_key and config.llm_api_key.strip():
        return config.llm_api_key.strip()

    secret_name = config.llm_api_key_secret_name
    if not secret_name or not secret_name.strip():
        secrets_logger.warning("No model API key configured")
        return None

    try:
        secrets_logger.info(f"Retrieving model API key from Secrets Manager: {secret_name}")
        secrets_client = boto3.client("secretsmanager", region_name=config.aws_region)
        response = secrets_client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        secrets_logger.error(
            f"AWS Secrets Manager error retrieving {secret_name}: {error_code}"
        )
        return None

    secret_value = (response.get("SecretString") or "").strip()
    if not secret_value:
        secrets_logger.error(f"Secret {secret_name} contains no string value")
        return None

    try:
        secret_data = json.loads(secret_value)
    except json.JSONDecodeError:
        # Not JSON, use as plain string
        secrets_logger.info("Retrieved API key from plain text secret")
        return secret_value

    if isinstance(secret_data, dict):
        for key in ["api_key", "groq_api_key", "llm_api_key", "token"]:
            value = secret_data.get(key)
            if isinstance(value, str) and value.strip():
                secrets_logger.info("Retrieved API key from JSON secret")
                return value.strip()

    secrets_logger.error(f"No API key found in JSON secret {secret_name}")
    return None


def send_cloudwatch_metrics(
    metrics: dict[str, Any], namespace: str, aws_region: str, execution_id: str
) -> None:
    """
    Send custom metrics to CloudWatch.

    Failures are logged and never propagated.

    Args:
        metrics: Dictionary containing execution metrics
        namespace: CloudWatch namespace
        aws_region: AWS region for CloudWatch client
        execution_id: Execution ID for logging context
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)

    try:
        metrics_logger.info("Sending metrics to CloudWatch", metrics=metrics)
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)

        status = "Success" if metrics["success"] else "Failure"
        metric_data = [
            {
                "MetricName": "DigestItems",
                "Value": metrics["total_items"],
                "Unit": "Count",
            },
            {
                "MetricName": "ProcessingTime",
                "Value": metrics["processing_time_ms"],
                "Unit": "Milliseconds",
            },
            {
                "MetricName": "FallbackUsed",
                "Value": 1 if metrics["used_fallback"] else 0,
                "Unit": "Count",
                "Dimensions": [
                    {
                        "Name": "Reason",
                        "Value": metrics.get("fallback_reason") or "none",
                    }
                ],
            },
            {
                "MetricName": "ExecutionSuccess",
                "Value": 1 if metrics["success"] else 0,
                "Unit": "Count",
                "Dimensions": [{"Name": "Status", "Value": status}],
            },
        ]

        cloudwatch.put_metric_data(Namespace=namespace, MetricData=metric_data)
        metrics_logger.info(
            "Successfully sent metrics to CloudWatch",
            metrics_sent=len(metric_data),
            namespace=namespace,
        )

    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
