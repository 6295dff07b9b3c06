"""S3: the bucket named after the domain, its access mode and its content."""

import json
import mimetypes
import os
from typing import Optional

import structlog
from botocore.exceptions import ClientError

from spa_deploy.aws import DEFAULT_BUCKET_REGION, IDENTIFYING_TAG, error_code, is_not_found
from spa_deploy.errors import PreconditionError, UserDeclinedError
from spa_deploy.fs_helper import read_recursively
from spa_deploy.prompt import Confirm, ask

logger = structlog.get_logger()

LIFE_CYCLE_OLD_BRANCH_ID = "expire-old-branches"

INDEX_CACHE_CONTROL = "public, must-revalidate, proxy-revalidate, max-age=0"
CACHE_BUSTED_CACHE_CONTROL = "max-age=31536000"


def does_s3_bucket_exist(s3, bucket_name: str) -> bool:
    try:
        logger.info("[S3] Looking for bucket", bucket=bucket_name)
        s3.head_bucket(Bucket=bucket_name)
    except ClientError as e:
        if is_not_found(e):
            logger.info("[S3] Bucket not found", bucket=bucket_name)
            return False
        raise
    logger.info("[S3] Bucket found", bucket=bucket_name)
    return True


def create_bucket(s3, bucket_name: str, region: str = DEFAULT_BUCKET_REGION):
    logger.info("[S3] Creating bucket", bucket=bucket_name, region=region)
    params = {"Bucket": bucket_name}
    if region != "us-east-1":
        params["CreateBucketConfiguration"] = {"LocationConstraint": region}
    try:
        s3.create_bucket(**params)
    except ClientError as e:
        if error_code(e) == "BucketAlreadyOwnedByYou" or e.response.get("ResponseMetadata", {}).get("HTTPStatusCode") == 409:
            raise PreconditionError(
                f'A bucket "{bucket_name}" already exists but in an unsupported region... You should delete it first.'
            ) from e
        raise


def is_bucket_managed(s3, bucket_name: str) -> bool:
    logger.info(
        "[S3] Checking that bucket is managed by spa-deploy",
        bucket=bucket_name,
        tag=f"{IDENTIFYING_TAG['Key']}:{IDENTIFYING_TAG['Value']}",
    )
    try:
        tags = s3.get_bucket_tagging(Bucket=bucket_name).get("TagSet", [])
    except ClientError as e:
        if not is_not_found(e):
            raise
        return False
    if any(tag.get("Key") == IDENTIFYING_TAG["Key"] and tag.get("Value") == IDENTIFYING_TAG["Value"] for tag in tags):
        logger.info("[S3] Identifying tag found", bucket=bucket_name)
        return True
    return False


def confirm_bucket_management(s3, bucket_name: str, confirm: Confirm = ask) -> bool:
    if is_bucket_managed(s3, bucket_name):
        return True

    if confirm(
        f'[S3] Bucket "{bucket_name}" is not yet managed by spa-deploy. '
        "Would you like it to be modified (public access & website config) & managed by spa-deploy?",
        False,
    ):
        return True
    raise UserDeclinedError("You can use another domain name or delete the S3 bucket...")


def tag_bucket(s3, bucket_name: str):
    """Add the identifying tag, keeping the tags already on the bucket."""
    logger.info("[S3] Tagging bucket", bucket=bucket_name, tag=f"{IDENTIFYING_TAG['Key']}:{IDENTIFYING_TAG['Value']}")
    try:
        tags = s3.get_bucket_tagging(Bucket=bucket_name).get("TagSet", [])
    except ClientError as e:
        if not is_not_found(e):
            raise
        tags = []
    tags = [tag for tag in tags if tag.get("Key") != IDENTIFYING_TAG["Key"]] + [IDENTIFYING_TAG]
    s3.put_bucket_tagging(Bucket=bucket_name, Tagging={"TagSet": tags})


def set_bucket_website(s3, bucket_name: str):
    logger.info("[S3] Setting bucket website with index.html as index & error document", bucket=bucket_name)
    s3.put_bucket_website(
        Bucket=bucket_name,
        WebsiteConfiguration={
            "IndexDocument": {"Suffix": "index.html"},
            "ErrorDocument": {"Key": "index.html"},
        },
    )


def remove_bucket_website(s3, bucket_name: str):
    logger.info("[S3] Ensuring bucket is not a static website", bucket=bucket_name)
    s3.delete_bucket_website(Bucket=bucket_name)


def set_bucket_policy(s3, bucket_name: str):
    logger.info("[S3] Allowing public read", bucket=bucket_name)
    policy = {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowPublicRead",
                "Effect": "Allow",
                "Principal": "*",
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket_name}/*",
            }
        ],
    }
    s3.put_bucket_policy(Bucket=bucket_name, Policy=json.dumps(policy))


def set_bucket_policy_for_oac(s3, bucket_name: str, distribution_arn: str):
    logger.info("[S3] Allowing distribution to read from bucket", bucket=bucket_name, distribution=distribution_arn)
    policy = {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowCloudFrontServicePrincipal",
                "Effect": "Allow",
                "Principal": {"Service": "cloudfront.amazonaws.com"},
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{bucket_name}/*",
                "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
            }
        ],
    }
    s3.put_bucket_policy(Bucket=bucket_name, Policy=json.dumps(policy))


def block_bucket_public_access(s3, bucket_name: str):
    logger.info("[S3] Blocking public access", bucket=bucket_name)
    s3.put_public_access_block(
        Bucket=bucket_name,
        PublicAccessBlockConfiguration={
            "BlockPublicAcls": True,
            "IgnorePublicAcls": True,
            "BlockPublicPolicy": True,
            "RestrictPublicBuckets": True,
        },
    )


def allow_bucket_public_access(s3, bucket_name: str):
    logger.info("[S3] Allowing public access", bucket=bucket_name)
    s3.delete_public_access_block(Bucket=bucket_name)


def make_bucket_private(s3, bucket_name: str, distribution_arn: str):
    """Only the distribution may read the bucket, through its OAC."""
    remove_bucket_website(s3, bucket_name)
    block_bucket_public_access(s3, bucket_name)
    set_bucket_policy_for_oac(s3, bucket_name, distribution_arn)


def make_bucket_public(s3, bucket_name: str):
    """The bucket is a public static website, read by CloudFront through its website endpoint."""
    set_bucket_website(s3, bucket_name)
    # the public policy is rejected while public policies are blocked
    allow_bucket_public_access(s3, bucket_name)
    set_bucket_policy(s3, bucket_name)


def upsert_lifecycle_configuration(s3, bucket_name: str, object_expiration_days: int):
    rules = []
    try:
        rules = s3.get_bucket_lifecycle_configuration(Bucket=bucket_name).get("Rules", [])
    except ClientError as e:
        if error_code(e) != "NoSuchLifecycleConfiguration":
            raise

    if any(
        rule.get("ID") == LIFE_CYCLE_OLD_BRANCH_ID and rule.get("Expiration", {}).get("Days") == object_expiration_days
        for rule in rules
    ):
        logger.info("[S3] Lifecycle configuration already up to date", bucket=bucket_name, rule=LIFE_CYCLE_OLD_BRANCH_ID)
        return

    rules_to_keep = []
    for rule in rules:
        if rule.get("ID") == LIFE_CYCLE_OLD_BRANCH_ID:
            continue
        # a rule must have a Filter (or the deprecated Prefix) to be put back
        if "Filter" not in rule and "Prefix" not in rule:
            rule = {**rule, "Filter": {"Prefix": ""}}
        rules_to_keep.append(rule)

    s3.put_bucket_lifecycle_configuration(
        Bucket=bucket_name,
        LifecycleConfiguration={
            "Rules": rules_to_keep
            + [
                {
                    "ID": LIFE_CYCLE_OLD_BRANCH_ID,
                    "Status": "Enabled",
                    "Filter": {"Prefix": ""},
                    "Expiration": {"Days": object_expiration_days},
                }
            ]
        },
    )
    logger.info("[S3] Lifecycle configuration added", bucket=bucket_name, rule=LIFE_CYCLE_OLD_BRANCH_ID)


def get_cache_control(key: str, cache_busted_prefix: Optional[str]) -> Optional[str]:
    if key == "index.html":
        # CloudFront keeps the file at the edge but revalidates it with the origin on each request
        return INDEX_CACHE_CONTROL
    if cache_busted_prefix and key.startswith(cache_busted_prefix):
        # hashed file names change whenever index.html does
        return CACHE_BUSTED_CACHE_CONTROL
    return None


def get_content_type(key: str) -> str:
    content_type, _ = mimetypes.guess_type(key)
    return content_type or "application/octet-stream"


def sync_to_s3(
    s3, folder: str, bucket_name: str, cache_busted_prefix: Optional[str] = None, subfolder: Optional[str] = None
) -> int:
    """Upload every file of ``folder``, below ``subfolder`` when given. Returns the file count."""
    files = read_recursively(folder)
    logger.info("[S3] Uploading folder", folder=folder, bucket=bucket_name, files=len(files))

    prefix = f"{subfolder}/" if subfolder else ""
    for key in files:
        params = {
            "Bucket": bucket_name,
            "Key": f"{prefix}{key}",
            "ContentType": get_content_type(key),
        }
        cache_control = get_cache_control(key, cache_busted_prefix)
        if cache_control:
            params["CacheControl"] = cache_control
        with open(os.path.join(folder, key), "rb") as body:
            s3.put_object(Body=body, **params)

    logger.info("[S3] Upload complete", bucket=bucket_name)
    return len(files)
