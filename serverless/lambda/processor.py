# processor.py
import os
import json
import time
import logging

import boto3

from image_variants import Config, ImageVariantError, S3ObjectStore, process_job
from image_variants.results import failed

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# ---------- AWS clients ----------
s3 = boto3.client("s3")

# ---------- Configuration (read once per execution environment) ----------
CONFIG = Config.from_env()
# Time kept back from the Lambda timeout to report results
DEADLINE_MARGIN_MS = int(os.getenv("DEADLINE_MARGIN_MS", "3000"))


# Construct HTTP response with status, body, headers, and content type
def _resp(status, body="", headers=None, ctype="application/json"):
    h = {"Content-Type": ctype}
    if headers:
        h.update(headers)
    return {"statusCode": status, "headers": h, "body": body or ""}

# Return JSON response with given data and status code
def _json(data, status=200):
    return _resp(status, json.dumps(data, default=str))

# Numeric routing attribute the SNS subscription filter matched on
def _routing_size(attrs):
    attr = (attrs or {}).get("size") or {}
    return attr.get("Value") or attr.get("StringValue") or attr.get("stringValue")

# Yield (payload, routing_size) for every notification in the event
def _messages(event):
    records = event.get("Records")
    if records is None:
        # direct invocation with a bare {"bucket", "key", "size"} payload
        yield event, None
        return
    for rec in records:
        if "Sns" in rec:
            sns = rec["Sns"]
            yield sns.get("Message"), _routing_size(sns.get("MessageAttributes"))
        elif rec.get("eventSource") == "aws:sqs":
            body = rec.get("body")
            routing = _routing_size(rec.get("messageAttributes"))
            try:
                envelope = json.loads(body)
            except (TypeError, ValueError):
                envelope = None
            # SNS -> SQS without raw message delivery wraps the message once more
            if isinstance(envelope, dict) and envelope.get("Type") == "Notification":
                yield envelope.get("Message"), _routing_size(envelope.get("MessageAttributes")) or routing
            else:
                yield body, routing
        else:
            yield rec, None

# Best-effort (bucket, key) of a payload for failure logs
def _where(payload):
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            return "", ""
    if not isinstance(payload, dict):
        return "", ""
    return str(payload.get("bucket") or ""), str(payload.get("key") or "")

# Absolute time.monotonic() deadline derived from the invocation's remaining time
def _deadline(context):
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if remaining is None:
        return None
    budget_ms = max(remaining() - DEADLINE_MARGIN_MS, 0)
    return time.monotonic() + budget_ms / 1000.0


def handler(event, context):
    logger.info("Event received: %s", json.dumps(event, default=str))
    store = S3ObjectStore(s3)
    deadline = _deadline(context)

    results = []
    for payload, routing_size in _messages(event):
        try:
            result = process_job(payload, store, CONFIG, routing_size=routing_size, deadline=deadline)
        except ImageVariantError as e:
            # re-raise so the platform retries / dead-letters the delivery
            logger.error(json.dumps({"ok": False, "retryable": e.retryable, **failed(e, *_where(payload)).to_dict()}))
            raise
        summary = result.to_dict()
        logger.info(json.dumps({"ok": True, "src": result.key, "status": result.status,
                                "variants": len(result.variants)}))
        results.append(summary)

    return _json({"message": "Image processed successfully", "results": results})


# Health check for smoke tests after deployment
def health_check(event, context):
    return _json({
        "message": "Image processor is healthy",
        "targetSizes": list(CONFIG.target_widths),
        "quality": CONFIG.quality,
        "outputFormats": [f.value for f in CONFIG.output_formats],
        "tier": CONFIG.worker_tier or None,
    })
