"""CloudFront: find, create and reconcile the distribution serving the SPA."""

import copy
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from spa_deploy.aws import (
    IDENTIFYING_TAG,
    get_all,
    get_origin_id,
    get_s3_domain_name,
    get_s3_domain_name_for_blocked_bucket,
    wait_for,
)
from spa_deploy.cloudfront_functions import create_and_publish_redirection_function, resolve_function_arns
from spa_deploy.errors import PreconditionError
from spa_deploy.lambda_edge import LAMBDA_PREFIX
from spa_deploy.origin_access import OAC

logger = structlog.get_logger()

DEFAULT_ROOT_OBJECT = "index.html"
IN_PROGRESS_STATUSES = ("InProgress", "In Progress")

DISTRIBUTION_MAX_WAIT = 1500
DISTRIBUTION_POLL_DELAY = 10
INVALIDATION_MAX_WAIT = 600
INVALIDATION_POLL_DELAY = 20
INVALIDATION_ATTEMPTS = 5


@dataclass
class UpdateDistributionOptions:
    should_block_bucket_public_access: bool = False
    oac: Optional[OAC] = None
    no_default_root_object: bool = False
    redirect_403_to_root: bool = False
    additional_aliases: List[str] = field(default_factory=list)
    # CloudFront function event type -> function names, in association order
    function_associations: Dict[str, List[str]] = field(default_factory=dict)
    basic_auth_lambda_arn: Optional[str] = None

    def __post_init__(self):
        if self.should_block_bucket_public_access and self.oac is None:
            raise PreconditionError("An Origin Access Control is required to block bucket public access")


def wait_until_distribution_deployed(cloudfront, distribution_id: str):
    logger.info(
        "[CloudFront] Waiting for distribution to be deployed, this might take up to 25 minutes",
        distribution_id=distribution_id,
    )
    wait_for(
        cloudfront,
        "distribution_deployed",
        max_wait=DISTRIBUTION_MAX_WAIT,
        delay=DISTRIBUTION_POLL_DELAY,
        description=f"Distribution {distribution_id}",
        Id=distribution_id,
    )
    logger.info("[CloudFront] Distribution deployed", distribution_id=distribution_id)


def has_identifying_tag(tags: List[dict]) -> bool:
    return any(tag.get("Key") == IDENTIFYING_TAG["Key"] and tag.get("Value") == IDENTIFYING_TAG["Value"] for tag in tags)


def find_deployed_cloudfront_distribution(cloudfront, domain_name: str) -> Optional[dict]:
    """Return the distribution aliased to ``domain_name``, waiting for it to be deployed.

    A matching distribution without the identifying tag was not created by
    spa-deploy and is never adopted.
    """

    def get_page(marker, page):
        logger.info("[CloudFront] Searching CloudFront distribution", page=page)
        params = {"Marker": marker} if marker else {}
        distribution_list = cloudfront.list_distributions(**params).get("DistributionList")
        if not distribution_list:
            return [], None
        return distribution_list.get("Items", []), distribution_list.get("NextMarker")

    distribution = next(
        (
            distribution
            for distribution in get_all(get_page)
            if domain_name in distribution.get("Aliases", {}).get("Items", [])
        ),
        None,
    )
    if distribution is None:
        logger.info("[CloudFront] No matching distribution", domain=domain_name)
        return None

    tags = cloudfront.list_tags_for_resource(Resource=distribution["ARN"]).get("Tags", {}).get("Items", [])
    if not has_identifying_tag(tags):
        raise PreconditionError(
            f"CloudFront distribution {distribution['Id']} has no tag "
            f"{IDENTIFYING_TAG['Key']}:{IDENTIFYING_TAG['Value']}"
        )

    logger.info("[CloudFront] Distribution found", distribution_id=distribution["Id"])
    if distribution.get("Status") in IN_PROGRESS_STATUSES:
        wait_until_distribution_deployed(cloudfront, distribution["Id"])

    return distribution


def tag_cloudfront_distribution(cloudfront, distribution: dict):
    logger.info(
        "[CloudFront] Tagging distribution",
        distribution_id=distribution["Id"],
        tag=f"{IDENTIFYING_TAG['Key']}:{IDENTIFYING_TAG['Value']}",
    )
    cloudfront.tag_resource(Resource=distribution["ARN"], Tags={"Items": [IDENTIFYING_TAG]})


def get_public_origin(domain_name: str, region: str) -> dict:
    return {
        "Id": get_origin_id(domain_name, region),
        "DomainName": get_s3_domain_name(domain_name, region),
        "OriginPath": "",
        "CustomHeaders": {"Quantity": 0},
        "CustomOriginConfig": {
            "HTTPPort": 80,
            "HTTPSPort": 443,
            "OriginProtocolPolicy": "http-only",
            "OriginSslProtocols": {"Quantity": 1, "Items": ["TLSv1.2"]},
            "OriginReadTimeout": 30,
            "OriginKeepaliveTimeout": 5,
        },
    }


def get_private_origin(domain_name: str, region: str, origin_access_control_id: str) -> dict:
    s3_domain_name = get_s3_domain_name_for_blocked_bucket(domain_name, region)
    return {
        "Id": s3_domain_name,
        "DomainName": s3_domain_name,
        "OriginPath": "",
        "CustomHeaders": {"Quantity": 0},
        # OAC replaces origin access identities, which must then be empty
        "S3OriginConfig": {"OriginAccessIdentity": ""},
        "OriginAccessControlId": origin_access_control_id,
    }


def get_base_distribution_config(domain_name: str, certificate_arn: str, region: str) -> dict:
    origin = get_public_origin(domain_name, region)
    return {
        "CallerReference": str(uuid.uuid4()),
        "Aliases": {"Quantity": 1, "Items": [domain_name]},
        "DefaultRootObject": DEFAULT_ROOT_OBJECT,
        "Origins": {"Quantity": 1, "Items": [origin]},
        "DefaultCacheBehavior": {
            "TargetOriginId": origin["Id"],
            "ViewerProtocolPolicy": "redirect-to-https",
            "AllowedMethods": {
                "Quantity": 2,
                "Items": ["HEAD", "GET"],
                "CachedMethods": {"Quantity": 2, "Items": ["HEAD", "GET"]},
            },
            "ForwardedValues": {
                "QueryString": False,
                "Cookies": {"Forward": "none"},
                "Headers": {"Quantity": 0},
                "QueryStringCacheKeys": {"Quantity": 0},
            },
            "TrustedSigners": {"Enabled": False, "Quantity": 0},
            "MinTTL": 0,
            "DefaultTTL": 86400,
            "MaxTTL": 31536000,
            "SmoothStreaming": False,
            "FieldLevelEncryptionId": "",
            "LambdaFunctionAssociations": {"Quantity": 0},
            "FunctionAssociations": {"Quantity": 0},
            # required to deliver gzip data
            "Compress": True,
        },
        "CacheBehaviors": {"Quantity": 0},
        "CustomErrorResponses": {"Quantity": 0},
        "Comment": "",
        "Logging": {"Enabled": False, "IncludeCookies": False, "Bucket": "", "Prefix": ""},
        "PriceClass": "PriceClass_All",
        "Enabled": True,
        "ViewerCertificate": {
            "ACMCertificateArn": certificate_arn,
            "SSLSupportMethod": "sni-only",
            "MinimumProtocolVersion": "TLSv1.2_2021",
            "CertificateSource": "acm",
        },
        "Restrictions": {"GeoRestriction": {"RestrictionType": "none", "Quantity": 0}},
        "WebACLId": "",
        "HttpVersion": "http2",
    }


def create_cloudfront_distribution(cloudfront, domain_name: str, certificate_arn: str, region: str) -> dict:
    logger.info(
        "[CloudFront] Creating CloudFront distribution",
        domain=domain_name,
        origin=get_s3_domain_name(domain_name, region),
    )
    response = cloudfront.create_distribution(
        DistributionConfig=get_base_distribution_config(domain_name, certificate_arn, region)
    )
    distribution = response.get("Distribution")
    if not distribution:
        raise PreconditionError("Could not create distribution")

    tag_cloudfront_distribution(cloudfront, distribution)
    wait_until_distribution_deployed(cloudfront, distribution["Id"])
    return distribution


def _quantified(items: list, current: Optional[dict]) -> dict:
    if not items:
        # keep the provider's own rendering of an empty list
        if current is not None and current.get("Quantity") == 0:
            return current
        return {"Quantity": 0}
    return {"Quantity": len(items), "Items": items}


def set_function_associations(config: dict, function_arns: List[tuple]) -> dict:
    behavior = config["DefaultCacheBehavior"]
    items = [{"FunctionARN": arn, "EventType": event_type} for event_type, arn in function_arns]
    if not items and "FunctionAssociations" not in behavior:
        return config
    behavior["FunctionAssociations"] = _quantified(items, behavior.get("FunctionAssociations"))
    return config


def set_basic_auth_lambda(config: dict, lambda_arn: Optional[str]) -> dict:
    """Associate the basic auth Lambda@Edge, or drop a stale one; other lambdas are kept."""
    behavior = config["DefaultCacheBehavior"]
    current = behavior.get("LambdaFunctionAssociations")
    items = [
        item for item in (current or {}).get("Items", []) if f":function:{LAMBDA_PREFIX}" not in item["LambdaFunctionARN"]
    ]
    if lambda_arn:
        items.append({"LambdaFunctionARN": lambda_arn, "EventType": "viewer-request", "IncludeBody": False})
    if items == (current or {}).get("Items", []):
        return config
    behavior["LambdaFunctionAssociations"] = _quantified(items, current)
    return config


def _is_origin_associated(config: dict, origin: dict) -> bool:
    return any(
        item.get("DomainName") == origin["DomainName"]
        and item.get("OriginAccessControlId", "") == origin.get("OriginAccessControlId", "")
        for item in config.get("Origins", {}).get("Items", [])
    )


def set_origin(config: dict, origin: dict) -> dict:
    """Make ``origin`` the single origin, unless it already is configured."""
    if _is_origin_associated(config, origin):
        return config
    config["Origins"] = {"Quantity": 1, "Items": [origin]}
    config["DefaultCacheBehavior"]["TargetOriginId"] = origin["Id"]
    return config


def make_bucket_private(config: dict, domain_name: str, region: str, origin_access_control_id: str) -> dict:
    return set_origin(config, get_private_origin(domain_name, region, origin_access_control_id))


def make_bucket_public(config: dict, domain_name: str, region: str) -> dict:
    return set_origin(config, get_public_origin(domain_name, region))


def add_403_redirect_to_root(config: dict) -> dict:
    current = config.get("CustomErrorResponses") or {"Quantity": 0}
    items = list(current.get("Items", []))
    if any(item.get("ErrorCode") == 403 for item in items):
        return config
    items.append({"ErrorCode": 403, "ResponsePagePath": "/index.html", "ResponseCode": "200", "ErrorCachingMinTTL": 10})
    config["CustomErrorResponses"] = {"Quantity": len(items), "Items": items}
    return config


def add_aliases(config: dict, aliases: List[str]) -> dict:
    items = list(config.get("Aliases", {}).get("Items", []))
    for alias in aliases:
        if alias not in items:
            items.append(alias)
    if items == config.get("Aliases", {}).get("Items", []):
        return config
    config["Aliases"] = {"Quantity": len(items), "Items": items}
    return config


def build_distribution_config(
    cloudfront, current: dict, domain_name: str, region: str, options: UpdateDistributionOptions
) -> dict:
    """Return a copy of ``current`` patched to the desired state."""
    config = copy.deepcopy(current)

    names = [name for function_names in options.function_associations.values() for name in function_names]
    arns_by_name = resolve_function_arns(cloudfront, names) if names else {}
    function_arns = [
        (event_type, arns_by_name[name])
        for event_type, function_names in options.function_associations.items()
        for name in function_names
    ]

    if options.no_default_root_object:
        function_arns.append(("viewer-request", create_and_publish_redirection_function(cloudfront)))
        config["DefaultRootObject"] = ""
    else:
        config["DefaultRootObject"] = DEFAULT_ROOT_OBJECT
    set_function_associations(config, function_arns)

    set_basic_auth_lambda(config, options.basic_auth_lambda_arn)

    if options.should_block_bucket_public_access:
        make_bucket_private(config, domain_name, region, options.oac.id)
    else:
        make_bucket_public(config, domain_name, region)

    if options.redirect_403_to_root:
        add_403_redirect_to_root(config)

    if options.additional_aliases:
        add_aliases(config, options.additional_aliases)

    return config


def update_cloudfront_distribution(
    cloudfront, distribution_id: str, domain_name: str, region: str, options: UpdateDistributionOptions
) -> bool:
    """Bring the distribution to the desired state. Returns True if it was updated."""
    response = cloudfront.get_distribution_config(Id=distribution_id)
    current = response.get("DistributionConfig")
    etag = response.get("ETag")
    if not current or not etag:
        raise PreconditionError(f"Could not get the configuration of distribution {distribution_id}")

    updated = build_distribution_config(cloudfront, current, domain_name, region, options)
    if updated == current:
        logger.info("[CloudFront] No updates needed for distribution", distribution_id=distribution_id)
        return False

    logger.info("[CloudFront] Updating distribution configuration", distribution_id=distribution_id)
    cloudfront.update_distribution(Id=distribution_id, IfMatch=etag, DistributionConfig=updated)
    return True


def get_cache_invalidations(cache_invalidations: str, sub_folder: Optional[str]) -> str:
    """Turn "a, /b" into "/a,/b", below ``sub_folder`` when given."""
    paths = []
    for path in cache_invalidations.split(","):
        path = path.strip()
        if path.startswith("/"):
            path = path[1:]
        paths.append(f"/{sub_folder}/{path}" if sub_folder else f"/{path}")
    return ",".join(paths)


def invalidate_cloudfront_cache(cloudfront, distribution_id: str, paths: str, wait: bool = False):
    logger.info("[CloudFront] Creating invalidation", distribution_id=distribution_id, paths=paths)
    items = [path.strip() for path in paths.split(",")]
    response = cloudfront.create_invalidation(
        DistributionId=distribution_id,
        InvalidationBatch={
            "Paths": {"Quantity": len(items), "Items": items},
            "CallerReference": str(uuid.uuid4()),
        },
    )
    invalidation = response.get("Invalidation")
    if not invalidation or not wait:
        return

    logger.info("[CloudFront] Waiting for invalidation to be completed, this might take up to 10 minutes")
    wait_for(
        cloudfront,
        "invalidation_completed",
        max_wait=INVALIDATION_MAX_WAIT,
        delay=INVALIDATION_POLL_DELAY,
        description=f"Invalidation {invalidation['Id']}",
        DistributionId=distribution_id,
        Id=invalidation["Id"],
    )


def invalidate_cloudfront_cache_with_retry(
    cloudfront, distribution_id: str, paths: str, wait: bool = False, attempts: int = INVALIDATION_ATTEMPTS
):
    for attempt in range(1, attempts + 1):
        try:
            return invalidate_cloudfront_cache(cloudfront, distribution_id, paths, wait)
        except (BotoCoreError, ClientError) as e:
            if attempt == attempts:
                raise
            logger.warning("[CloudFront] Invalidation failed, retrying", attempt=attempt, error=str(e))
