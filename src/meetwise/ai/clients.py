import boto3

from .config import BEDROCK_REGION, BOTO_CONFIG


def bedrock_client():
    return boto3.client("bedrock-runtime", region_name=BEDROCK_REGION, config=BOTO_CONFIG)
