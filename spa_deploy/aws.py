"""AWS clients, naming conventions and polling helpers shared by every reconciler."""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

import boto3
import structlog
from botocore.exceptions import ClientError, WaiterError

from spa_deploy.errors import PreconditionError, WaitTimeoutError

logger = structlog.get_logger()

# ACM certificates and Lambda@Edge functions used by CloudFront must live in us-east-1
EDGE_REGION = "us-east-1"
DEFAULT_BUCKET_REGION = "us-east-1"

# Ownership marker on the bucket and the distribution, the only record of what spa-deploy manages
IDENTIFYING_TAG = {"Key": "managed-by-spa-deploy", "Value": "v1"}

# CloudFront's fixed hosted zone ID, used by every alias record targeting a distribution
CLOUDFRONT_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"

# S3 API does not expose the website endpoint of a region
# https://docs.aws.amazon.com/general/latest/gr/s3.html
WEBSITE_ENDPOINTS = {
    "us-east-2": "s3-website.us-east-2.amazonaws.com",
    "us-east-1": "s3-website-us-east-1.amazonaws.com",
    "us-west-1": "s3-website-us-west-1.amazonaws.com",
    "us-west-2": "s3-website-us-west-2.amazonaws.com",
    "ap-south-1": "s3-website.ap-south-1.amazonaws.com",
    "ap-northeast-3": "s3-website.ap-northeast-3.amazonaws.com",
    "ap-northeast-2": "s3-website.ap-northeast-2.amazonaws.com",
    "ap-southeast-1": "s3-website-ap-southeast-1.amazonaws.com",
    "ap-southeast-2": "s3-website-ap-southeast-2.amazonaws.com",
    "ap-northeast-1": "s3-website-ap-northeast-1.amazonaws.com",
    "ca-central-1": "s3-website.ca-central-1.amazonaws.com",
    "cn-northwest-1": "s3-website.cn-northwest-1.amazonaws.com.cn",
    "eu-central-1": "s3-website.eu-central-1.amazonaws.com",
    "eu-west-1": "s3-website-eu-west-1.amazonaws.com",
    "eu-west-2": "s3-website.eu-west-2.amazonaws.com",
    "eu-west-3": "s3-website.eu-west-3.amazonaws.com",
    "eu-north-1": "s3-website.eu-north-1.amazonaws.com",
    "sa-east-1": "s3-website-sa-east-1.amazonaws.com",
}

NOT_FOUND_CODES = {
    "404",
    "NotFound",
    "NoSuchBucket",
    "NoSuchEntity",
    "NoSuchTagSet",
    "NoSuchTagSetError",
    "ResourceNotFoundException",
}


@dataclass
class AwsServices:
    """One client per AWS service, built once and handed to every reconciler."""

    s3: Any
    cloudfront: Any
    acm: Any
    route53: Any
    lambda_: Any
    iam: Any
    bucket_region: str = DEFAULT_BUCKET_REGION


def create_services(bucket_region: str = DEFAULT_BUCKET_REGION, profile: Optional[str] = None) -> AwsServices:
    session = boto3.Session(profile_name=profile, region_name=bucket_region)
    return AwsServices(
        s3=session.client("s3", region_name=bucket_region),
        cloudfront=session.client("cloudfront"),
        acm=session.client("acm", region_name=EDGE_REGION),
        route53=session.client("route53"),
        lambda_=session.client("lambda", region_name=EDGE_REGION),
        iam=session.client("iam"),
        bucket_region=bucket_region,
    )


Page = Tuple[List[Any], Optional[str]]


def get_all(get_page: Callable[[Optional[str], int], Page]) -> List[Any]:
    """Follow a pagination cursor until the provider stops returning one.

    ``get_page`` receives the cursor of the previous page (None for the first
    one) and the 1-based page number, and returns ``(items, next_cursor)``.
    Errors raised by ``get_page`` propagate untouched.
    """
    entities = []
    next_marker = None
    page = 0
    while True:
        page += 1
        items, next_marker = get_page(next_marker, page)
        entities.extend(items)
        if not next_marker:
            return entities


def error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def is_not_found(error: ClientError) -> bool:
    """True when the provider answered that the resource does not exist."""
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return status == 404 or error_code(error) in NOT_FOUND_CODES


def get_website_endpoint(region: str) -> str:
    try:
        return WEBSITE_ENDPOINTS[region]
    except KeyError:
        raise PreconditionError(f"S3 website endpoint is unknown for region {region}")


def get_s3_domain_name(domain_name: str, region: str) -> str:
    return f"{domain_name}.{get_website_endpoint(region)}"


def get_s3_domain_name_for_blocked_bucket(domain_name: str, region: str) -> str:
    return f"{domain_name}.s3.{region}.amazonaws.com"


def get_origin_id(domain_name: str, region: str) -> str:
    return f"S3-Website-{get_s3_domain_name(domain_name, region)}"


def wait_for(client, waiter_name: str, max_wait: int, delay: int, description: str, **params):
    """Block until ``waiter_name`` succeeds, at most ``max_wait`` seconds."""
    waiter = client.get_waiter(waiter_name)
    max_attempts = max(1, max_wait // delay)
    try:
        waiter.wait(WaiterConfig={"Delay": delay, "MaxAttempts": max_attempts}, **params)
    except WaiterError as e:
        raise WaitTimeoutError(
            f"{description} not ready after {max_wait} seconds ({e})",
            resource=description,
            max_wait=max_wait,
        ) from e
