"""
S3 Bucket creation for the CDK stack.

Creates:
- Photo bucket holding event photo renditions and organization assets
"""

from typing import Callable

from aws_cdk import RemovalPolicy
from aws_cdk import aws_s3 as s3
from constructs import Construct


def create_s3_buckets(stack: Construct, rn: Callable[[str], str], allowed_origins: list[str]) -> dict[str, s3.Bucket]:
    """Create S3 buckets for the application.

    Args:
        stack: CDK Construct (usually the Stack instance)
        rn: helper function to create resource names (rn(name: str) -> str)
        allowed_origins: Origins allowed to PUT through presigned URLs

    Returns:
        Dict with 'photo_bucket'
    """
    photo_bucket = s3.Bucket(
        stack,
        "Photos",
        bucket_name=rn("eventlens-photos"),
        versioned=False,
        encryption=s3.BucketEncryption.S3_MANAGED,
        block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
        removal_policy=RemovalPolicy.RETAIN,
        cors=[
            s3.CorsRule(
                allowed_methods=[s3.HttpMethods.PUT],
                allowed_origins=allowed_origins,
                allowed_headers=["*"],
                max_age=3000,
            )
        ],
    )

    return {"photo_bucket": photo_bucket}
