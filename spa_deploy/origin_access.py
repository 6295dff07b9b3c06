"""Origin Access Control letting CloudFront read a private bucket."""

from dataclasses import dataclass
from typing import Optional

import structlog

from spa_deploy.aws import get_all

logger = structlog.get_logger()


@dataclass
class OAC:
    origin_access_control: dict
    etag: str

    @property
    def id(self) -> str:
        return self.origin_access_control["Id"]


def get_origin_access_control_name(domain_name: str, distribution_id: str) -> str:
    return f"{domain_name}-{distribution_id}"


def get_existing_oac(cloudfront, name: str) -> Optional[OAC]:
    def get_page(marker, page):
        params = {"Marker": marker} if marker else {}
        oac_list = cloudfront.list_origin_access_controls(**params).get("OriginAccessControlList", {})
        return oac_list.get("Items", []), oac_list.get("NextMarker")

    summary = next((oac for oac in get_all(get_page) if oac.get("Name") == name), None)
    if summary is None:
        return None

    response = cloudfront.get_origin_access_control(Id=summary["Id"])
    return OAC(origin_access_control=response["OriginAccessControl"], etag=response["ETag"])


def create_oac(cloudfront, name: str, domain_name: str, distribution_id: str) -> OAC:
    logger.info("[CloudFront] Creating an Origin Access Control", domain=domain_name, name=name)
    response = cloudfront.create_origin_access_control(
        OriginAccessControlConfig={
            "Name": name,
            "Description": f"OAC used by {domain_name} associated to distribution {distribution_id}",
            "OriginAccessControlOriginType": "s3",
            "SigningBehavior": "always",
            "SigningProtocol": "sigv4",
        }
    )
    return OAC(origin_access_control=response["OriginAccessControl"], etag=response["ETag"])


def upsert_origin_access_control(cloudfront, domain_name: str, distribution_id: str) -> OAC:
    name = get_origin_access_control_name(domain_name, distribution_id)
    existing = get_existing_oac(cloudfront, name)
    if existing is not None:
        logger.info("[CloudFront] Origin Access Control found", name=name, id=existing.id)
        return existing
    return create_oac(cloudfront, name, domain_name, distribution_id)


def cleanup_origin_access_control(cloudfront, domain_name: str, distribution_id: str):
    """Delete the pair's OAC if there is one."""
    existing = get_existing_oac(cloudfront, get_origin_access_control_name(domain_name, distribution_id))
    if existing is None:
        return
    logger.info("[CloudFront] Deleting Origin Access Control", id=existing.id)
    cloudfront.delete_origin_access_control(Id=existing.id, IfMatch=existing.etag)
