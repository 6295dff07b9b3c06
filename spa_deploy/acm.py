"""ACM: find or request the TLS certificate served by CloudFront."""

import time
from typing import Optional

import structlog

from spa_deploy.aws import get_all, wait_for
from spa_deploy.errors import PreconditionError
from spa_deploy.route53 import create_certificate_validation_record

logger = structlog.get_logger()

CERTIFICATE_MAX_WAIT = 600
CERTIFICATE_POLL_DELAY = 10
# New certificates do not expose their validation records right away
VALIDATION_OPTIONS_DELAY = 5


def domain_name_match(certificate_domain_name: Optional[str], domain_name: str) -> bool:
    """True if a certificate name covers ``domain_name`` exactly or by wildcard."""
    parent = ".".join(domain_name.split(".")[1:])
    return (certificate_domain_name or "") in (f"*.{parent}", domain_name)


def _wait_until_validated(acm, certificate_arn: str):
    wait_for(
        acm,
        "certificate_validated",
        max_wait=CERTIFICATE_MAX_WAIT,
        delay=CERTIFICATE_POLL_DELAY,
        description=f"Certificate {certificate_arn}",
        CertificateArn=certificate_arn,
    )


def get_certificate_arn(acm, domain_name: str) -> Optional[str]:
    """Return the ARN of an issued certificate matching ``domain_name``.

    The first issued match in list order wins. Without one, the last pending
    match is waited for. Returns None when nothing matches.
    """
    pending_certificate_arn = None

    def get_page(marker, page):
        logger.info("[ACM] Looking for a certificate", domain=domain_name, page=page)
        params = {"NextToken": marker} if marker else {}
        response = acm.list_certificates(**params)
        return response.get("CertificateSummaryList", []), response.get("NextToken")

    for summary in get_all(get_page):
        if not summary.get("CertificateArn"):
            continue

        certificate = acm.describe_certificate(CertificateArn=summary["CertificateArn"]).get("Certificate")
        if not certificate:
            continue

        names = [certificate.get("DomainName")] + certificate.get("SubjectAlternativeNames", [])
        matching_name = next((name for name in names if domain_name_match(name, domain_name)), None)
        if matching_name is None:
            continue

        status = certificate.get("Status")
        if status == "ISSUED":
            logger.info("[ACM] Certificate is matching", name=matching_name, arn=summary["CertificateArn"])
            return summary["CertificateArn"]

        logger.info("[ACM] Certificate is matching but not issued", name=matching_name, status=status)
        if status == "PENDING_VALIDATION":
            pending_certificate_arn = certificate.get("CertificateArn") or summary["CertificateArn"]

    if not pending_certificate_arn:
        return None

    logger.info("[ACM] Waiting for certificate validation", domain=domain_name, arn=pending_certificate_arn)
    _wait_until_validated(acm, pending_certificate_arn)
    logger.info("[ACM] Certificate is now validated", domain=domain_name)
    return pending_certificate_arn


def create_certificate(
    acm, route53, domain_name: str, hosted_zone_id: str, delay: float = VALIDATION_OPTIONS_DELAY
) -> str:
    logger.info("[ACM] Requesting a certificate", domain=domain_name)
    response = acm.request_certificate(DomainName=domain_name, ValidationMethod="DNS")
    certificate_arn = response.get("CertificateArn")
    if not certificate_arn:
        raise PreconditionError("No CertificateArn returned")

    handle_dns_validation(acm, route53, certificate_arn, domain_name, hosted_zone_id, delay)
    return certificate_arn


def handle_dns_validation(
    acm, route53, certificate_arn: str, domain_name: str, hosted_zone_id: str, delay: float = VALIDATION_OPTIONS_DELAY
):
    time.sleep(delay)

    certificate = acm.describe_certificate(CertificateArn=certificate_arn).get("Certificate")
    if not certificate or not certificate.get("DomainValidationOptions"):
        raise PreconditionError("Could not access domain validation options")

    option = next(
        (
            option
            for option in certificate["DomainValidationOptions"]
            if option.get("DomainName") == domain_name and option.get("ResourceRecord")
        ),
        None,
    )
    if option is None:
        raise PreconditionError(f'Could not find domain validation options for "{domain_name}" with DNS validation')

    create_certificate_validation_record(route53, option["ResourceRecord"], hosted_zone_id)
    logger.info("[ACM] Request sent, waiting for certificate validation by DNS", domain=domain_name)

    _wait_until_validated(acm, certificate_arn)
    logger.info("[ACM] Certificate is now validated", domain=domain_name)
