"""Deploy an SPA folder on its own domain: bucket, certificate, distribution, DNS, upload, invalidation.

Every step finds before it creates and compares before it writes, so a
failed deploy is fixed by running it again. Nothing is rolled back.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from spa_deploy import acm, cloudfront, origin_access, route53, s3
from spa_deploy.aws import AwsServices
from spa_deploy.errors import PreconditionError
from spa_deploy.lambda_edge import deploy_basic_auth_lambda, validate_credentials
from spa_deploy.prompt import Confirm, ask, is_ci_environment, predeploy_prompt

logger = structlog.get_logger()


@dataclass(frozen=True)
class DomainSpec:
    domain_name: str
    subfolder: Optional[str] = None

    @classmethod
    def parse(cls, url: str) -> "DomainSpec":
        """``app.example.com/some/branch`` -> domain ``app.example.com``, subfolder ``some/branch``."""
        domain_name, _, subfolder = url.strip().partition("/")
        domain_name = domain_name.strip().rstrip(".").lower()
        subfolder = subfolder.strip("/")
        if not domain_name:
            raise PreconditionError("domainName must be provided")
        return cls(domain_name=domain_name, subfolder=subfolder or None)


@dataclass
class DeployOptions:
    directory: str = "build"
    wait: bool = False
    cache_invalidations: str = "/*"
    cache_busted_prefix: Optional[str] = None
    credentials: Optional[str] = None
    no_prompt: bool = False
    should_block_bucket_public_access: bool = False
    no_default_root_object: bool = False
    redirect_403_to_root: bool = False
    object_expiration_days: Optional[int] = None
    function_associations: Dict[str, List[str]] = field(default_factory=dict)
    additional_aliases: List[str] = field(default_factory=list)


@dataclass
class DeployResult:
    domain_name: str
    certificate_arn: str
    distribution_id: str
    distribution_domain_name: str
    uploaded_files: int


def validate_local_assets(folder: str):
    if not os.path.isdir(folder):
        raise PreconditionError(f'folder "{folder}" not found')
    if not os.path.isfile(os.path.join(folder, "index.html")):
        raise PreconditionError(f'"index.html" not found in "{folder}" folder')


def validate_options(options: DeployOptions):
    if options.credentials:
        validate_credentials(options.credentials)
    if options.object_expiration_days is not None and options.object_expiration_days < 1:
        raise PreconditionError("objectExpirationDays must be a positive number of days")

    # CloudFront accepts a single handler per viewer-request event
    viewer_request_handlers = len(options.function_associations.get("viewer-request", []))
    viewer_request_handlers += int(options.no_default_root_object) + int(bool(options.credentials))
    if viewer_request_handlers > 1:
        raise PreconditionError(
            "Only one viewer-request handler is allowed: basic auth credentials, no default root object "
            "and viewer-request functions are mutually exclusive"
        )


def ensure_bucket(services: AwsServices, bucket_name: str, confirm: Confirm):
    if s3.does_s3_bucket_exist(services.s3, bucket_name):
        if s3.is_bucket_managed(services.s3, bucket_name):
            return
        s3.confirm_bucket_management(services.s3, bucket_name, confirm)
    else:
        s3.create_bucket(services.s3, bucket_name, services.bucket_region)
    s3.tag_bucket(services.s3, bucket_name)


def ensure_hosted_zone(services: AwsServices, domain_name: str) -> dict:
    hosted_zone = route53.find_hosted_zone(services.route53, domain_name)
    if hosted_zone is None:
        hosted_zone = route53.create_hosted_zone(services.route53, domain_name)
    return hosted_zone


def ensure_certificate(services: AwsServices, domain_name: str, hosted_zone_id: str) -> str:
    certificate_arn = acm.get_certificate_arn(services.acm, domain_name)
    if certificate_arn is None:
        certificate_arn = acm.create_certificate(services.acm, services.route53, domain_name, hosted_zone_id)
    return certificate_arn


def ensure_distribution(services: AwsServices, domain_name: str, certificate_arn: str) -> dict:
    distribution = cloudfront.find_deployed_cloudfront_distribution(services.cloudfront, domain_name)
    if distribution is None:
        distribution = cloudfront.create_cloudfront_distribution(
            services.cloudfront, domain_name, certificate_arn, services.bucket_region
        )
    return distribution


def reconcile_access_mode(services: AwsServices, domain_name: str, distribution: dict, options: DeployOptions):
    oac = None
    if options.should_block_bucket_public_access:
        oac = origin_access.upsert_origin_access_control(services.cloudfront, domain_name, distribution["Id"])
        s3.make_bucket_private(services.s3, domain_name, distribution["ARN"])
    else:
        s3.make_bucket_public(services.s3, domain_name)

    if options.object_expiration_days:
        s3.upsert_lifecycle_configuration(services.s3, domain_name, options.object_expiration_days)

    basic_auth_lambda_arn = None
    if options.credentials:
        basic_auth_lambda_arn = deploy_basic_auth_lambda(services.lambda_, services.iam, domain_name, options.credentials)

    updated = cloudfront.update_cloudfront_distribution(
        services.cloudfront,
        distribution["Id"],
        domain_name,
        services.bucket_region,
        cloudfront.UpdateDistributionOptions(
            should_block_bucket_public_access=options.should_block_bucket_public_access,
            oac=oac,
            no_default_root_object=options.no_default_root_object,
            redirect_403_to_root=options.redirect_403_to_root,
            additional_aliases=options.additional_aliases,
            function_associations=options.function_associations,
            basic_auth_lambda_arn=basic_auth_lambda_arn,
        ),
    )
    if updated and options.wait:
        cloudfront.wait_until_distribution_deployed(services.cloudfront, distribution["Id"])

    if not options.should_block_bucket_public_access:
        origin_access.cleanup_origin_access_control(services.cloudfront, domain_name, distribution["Id"])


def reconcile_dns(services: AwsServices, hosted_zone_id: str, domain_name: str, distribution: dict, confirm: Confirm):
    if route53.needs_update_record(
        services.route53, hosted_zone_id, domain_name, distribution["DomainName"], confirm
    ):
        route53.update_record(services.route53, hosted_zone_id, domain_name, distribution["DomainName"])


def deploy(
    services: AwsServices,
    url: str,
    options: DeployOptions,
    confirm: Confirm = ask,
    ci: Optional[bool] = None,
) -> DeployResult:
    domain = DomainSpec.parse(url)
    domain_name = domain.domain_name
    logger.info("Deploying", folder=options.directory, domain=domain_name, subfolder=domain.subfolder)

    predeploy_prompt(is_ci_environment() if ci is None else ci, options.no_prompt, confirm)
    validate_local_assets(options.directory)
    validate_options(options)

    ensure_bucket(services, domain_name, confirm)
    hosted_zone = ensure_hosted_zone(services, domain_name)
    certificate_arn = ensure_certificate(services, domain_name, hosted_zone["Id"])
    distribution = ensure_distribution(services, domain_name, certificate_arn)
    reconcile_access_mode(services, domain_name, distribution, options)
    reconcile_dns(services, hosted_zone["Id"], domain_name, distribution, confirm)

    uploaded_files = s3.sync_to_s3(
        services.s3, options.directory, domain_name, options.cache_busted_prefix, domain.subfolder
    )
    cloudfront.invalidate_cloudfront_cache_with_retry(
        services.cloudfront,
        distribution["Id"],
        cloudfront.get_cache_invalidations(options.cache_invalidations, domain.subfolder),
        options.wait,
    )

    return DeployResult(
        domain_name=domain_name,
        certificate_arn=certificate_arn,
        distribution_id=distribution["Id"],
        distribution_domain_name=distribution["DomainName"],
        uploaded_files=uploaded_files,
    )
