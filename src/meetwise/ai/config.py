import os

from botocore.config import Config

MODEL_ID = os.environ.get("MODEL_ID", "amazon.nova-lite-v1:0")
BEDROCK_REGION = os.environ.get("BEDROCK_REGION", os.environ.get("AWS_REGION", "us-east-1"))

# Below this the classifier's verdict is treated as "not a meeting request".
MIN_MEETING_CONFIDENCE = float(os.environ.get("MIN_MEETING_CONFIDENCE", "0.6"))

INFERENCE_CONFIG = {
    "temperature": 0.0,
    "topP": 0.9,
    "maxTokens": 500,
}

# Retries live in meetwise.infra.retry; keep botocore's own retries to a single attempt.
BOTO_CONFIG = Config(
    connect_timeout=5,
    read_timeout=25,
    retries={"max_attempts": 1, "mode": "standard"},
)
