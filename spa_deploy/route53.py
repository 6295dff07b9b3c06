"""Route53: hosted zone lookup and the alias record pointing at CloudFront."""

import time
from typing import Optional

import structlog

from spa_deploy.aws import CLOUDFRONT_HOSTED_ZONE_ID, get_all
from spa_deploy.prompt import Confirm, ask

logger = structlog.get_logger()

VALIDATION_RECORD_TTL = 3600


def _zone_matches(zone_name: str, domain_name: str) -> bool:
    zone_name = zone_name.rstrip(".").lower()
    domain_name = domain_name.rstrip(".").lower()
    return domain_name == zone_name or domain_name.endswith(f".{zone_name}")


def find_hosted_zone(route53, domain_name: str) -> Optional[dict]:
    """Return the hosted zone owning ``domain_name``, or None.

    When several zones match, the most specific one (longest name) wins; zones
    of equal length keep the provider's list order.
    """
    logger.info("[Route53] Looking for a hosted zone", domain=domain_name)

    def get_page(marker, page):
        logger.info("[Route53] Listing hosted zones", page=page)
        params = {"Marker": marker} if marker else {}
        response = route53.list_hosted_zones(**params)
        return response.get("HostedZones", []), response.get("NextMarker")

    hosted_zones = get_all(get_page)
    matching = [zone for zone in hosted_zones if _zone_matches(zone["Name"], domain_name)]

    if not matching:
        logger.info("[Route53] No hosted zone found", domain=domain_name)
        return None

    if len(matching) > 1:
        chosen = max(matching, key=lambda zone: len(zone["Name"].rstrip(".")))
        logger.warning(
            "[Route53] Found multiple hosted zones, using the most specific one",
            zones=[zone["Name"] for zone in matching],
            chosen=chosen["Name"],
        )
        return chosen

    logger.info("[Route53] Found hosted zone", zone=matching[0]["Name"])
    return matching[0]


def create_hosted_zone(route53, domain_name: str) -> dict:
    logger.info("[Route53] Creating hosted zone", domain=domain_name)
    response = route53.create_hosted_zone(
        Name=domain_name,
        CallerReference=f"spa-deploy-{int(time.time() * 1000)}",
    )
    return response["HostedZone"]


def _confirm_overwrite(confirm: Confirm, message: str) -> bool:
    if confirm(message, False):
        return True
    logger.warning("[Route53] Website might not be served correctly unless you allow the record update")
    return False


def needs_update_record(
    route53, hosted_zone_id: str, domain_name: str, cloudfront_domain_name: str, confirm: Confirm = ask
) -> bool:
    """Decide whether the alias record of ``domain_name`` must be written.

    A record already pointing at the distribution means no write. A record
    pointing elsewhere is only overwritten if ``confirm`` agrees.
    """
    logger.info("[Route53] Looking for a matching record", domain=domain_name)
    record_name = f"{domain_name}.".lower()
    target = cloudfront_domain_name.rstrip(".").lower()

    response = route53.list_resource_record_sets(HostedZoneId=hosted_zone_id, StartRecordName=record_name)
    for record in response.get("ResourceRecordSets", []):
        if record["Name"].lower() != record_name:
            continue

        if record["Type"] == "CNAME" and record.get("ResourceRecords"):
            value = record["ResourceRecords"][0]["Value"]
            if value.rstrip(".").lower() == target:
                logger.info("[Route53] Found well configured CNAME record", domain=domain_name)
                return False
            return _confirm_overwrite(
                confirm,
                f'[Route53] CNAME record for "{domain_name}" value is "{value}". '
                f'Would you like to update it to "{cloudfront_domain_name}."?',
            )

        if record["Type"] == "A" and record.get("AliasTarget"):
            alias = record["AliasTarget"]
            if alias["HostedZoneId"] == CLOUDFRONT_HOSTED_ZONE_ID and alias["DNSName"].rstrip(".").lower() == target:
                logger.info("[Route53] Found well configured A record", domain=domain_name)
                return False
            return _confirm_overwrite(
                confirm,
                f'[Route53] A record for "{domain_name}" value is "{alias["HostedZoneId"]}:{alias["DNSName"]}". '
                f'Would you like to update it to "{CLOUDFRONT_HOSTED_ZONE_ID}:{cloudfront_domain_name}."?',
            )

    logger.info("[Route53] No matching record found", domain=domain_name)
    return True


def update_record(route53, hosted_zone_id: str, domain_name: str, cloudfront_domain_name: str):
    logger.info("[Route53] Upserting A alias record", domain=domain_name, target=cloudfront_domain_name)
    route53.change_resource_record_sets(
        HostedZoneId=hosted_zone_id,
        ChangeBatch={
            "Changes": [
                {
                    "Action": "UPSERT",
                    "ResourceRecordSet": {
                        "Name": f"{domain_name}.",
                        "Type": "A",
                        "AliasTarget": {
                            "HostedZoneId": CLOUDFRONT_HOSTED_ZONE_ID,
                            "DNSName": f"{cloudfront_domain_name.rstrip('.')}.",
                            "EvaluateTargetHealth": False,
                        },
                    },
                }
            ]
        },
    )


def create_certificate_validation_record(route53, record: dict, hosted_zone_id: str):
    logger.info(
        "[Route53] Creating record to validate SSL certificate",
        type=record["Type"],
        name=record["Name"],
        value=record["Value"],
    )
    route53.change_resource_record_sets(
        HostedZoneId=hosted_zone_id,
        ChangeBatch={
            "Changes": [
                {
                    "Action": "UPSERT",
                    "ResourceRecordSet": {
                        "Name": record["Name"],
                        "Type": record["Type"],
                        "TTL": VALIDATION_RECORD_TTL,
                        "ResourceRecords": [{"Value": record["Value"]}],
                    },
                }
            ]
        },
    )
