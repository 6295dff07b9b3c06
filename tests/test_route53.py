"""Tests for hosted zone lookup and the alias record."""

from unittest.mock import MagicMock

import boto3
import pytest

from spa_deploy.aws import CLOUDFRONT_HOSTED_ZONE_ID
from spa_deploy.route53 import (
    create_certificate_validation_record,
    create_hosted_zone,
    find_hosted_zone,
    needs_update_record,
    update_record,
)
from tests.fakes import DIST_DOMAIN, DOMAIN


@pytest.fixture
def route53(mocked_aws):
    return boto3.client("route53", region_name="us-east-1")


@pytest.fixture
def zone_id(route53):
    """A parent zone of the domain, holding no record for it yet."""
    return route53.create_hosted_zone(Name="example.com", CallerReference="test")["HostedZone"]["Id"]


def add_record(route53, zone_id, record):
    route53.change_resource_record_sets(
        HostedZoneId=zone_id, ChangeBatch={"Changes": [{"Action": "UPSERT", "ResourceRecordSet": record}]}
    )


def get_records(route53, zone_id, name, record_type):
    records = route53.list_resource_record_sets(HostedZoneId=zone_id)["ResourceRecordSets"]
    return [record for record in records if record["Name"] == name and record["Type"] == record_type]


def cname(name, value):
    return {"Name": name, "Type": "CNAME", "TTL": 300, "ResourceRecords": [{"Value": value}]}


class TestFindHostedZone:
    """Tests for hosted zone lookup."""

    def test_match_on_second_page(self):
        """Zones are searched across every page."""
        route53 = MagicMock()
        route53.list_hosted_zones.side_effect = [
            {"HostedZones": [{"Id": "/hostedzone/Z0", "Name": "other.com."}], "NextMarker": "m1"},
            {"HostedZones": [{"Id": "/hostedzone/Z1", "Name": "example.com."}]},
        ]

        assert find_hosted_zone(route53, DOMAIN)["Id"] == "/hostedzone/Z1"
        assert route53.list_hosted_zones.call_args_list[1].kwargs == {"Marker": "m1"}

    def test_most_specific_zone_wins(self, route53):
        route53.create_hosted_zone(Name="example.com", CallerReference="parent")
        route53.create_hosted_zone(Name=DOMAIN, CallerReference="child")
        route53.create_hosted_zone(Name="other.com", CallerReference="other")

        assert find_hosted_zone(route53, DOMAIN)["Name"].rstrip(".") == DOMAIN

    def test_label_boundary(self, route53):
        """A zone only matches on a full label."""
        route53.create_hosted_zone(Name="lo.example.com", CallerReference="test")

        assert find_hosted_zone(route53, DOMAIN) is None

    def test_no_zone(self, route53):
        assert find_hosted_zone(route53, DOMAIN) is None

    def test_create(self, route53):
        zone = create_hosted_zone(route53, DOMAIN)

        assert zone["Name"].rstrip(".") == DOMAIN
        assert find_hosted_zone(route53, DOMAIN)["Id"] == zone["Id"]


class TestNeedsUpdateRecord:
    """Tests for the record decision."""

    def test_no_record(self, route53, zone_id):
        assert needs_update_record(route53, zone_id, DOMAIN, DIST_DOMAIN, confirm=MagicMock()) is True

    def test_other_record_name_ignored(self, route53, zone_id):
        """Records of other names are not considered."""
        add_record(route53, zone_id, cname(f"www.{DOMAIN}.", "elsewhere.com"))

        assert needs_update_record(route53, zone_id, DOMAIN, DIST_DOMAIN, confirm=MagicMock()) is True

    def test_alias_already_correct(self, route53, zone_id):
        confirm = MagicMock()
        update_record(route53, zone_id, DOMAIN, DIST_DOMAIN)

        assert needs_update_record(route53, zone_id, DOMAIN, DIST_DOMAIN, confirm) is False
        confirm.assert_not_called()

    def test_cname_already_correct(self, route53, zone_id):
        add_record(route53, zone_id, cname(f"{DOMAIN}.", DIST_DOMAIN))

        assert needs_update_record(route53, zone_id, DOMAIN, DIST_DOMAIN, confirm=MagicMock()) is False

    @pytest.mark.parametrize("answer", [True, False])
    def test_cname_elsewhere_asks(self, route53, zone_id, answer):
        """A record pointing elsewhere is only replaced with consent."""
        confirm = MagicMock(return_value=answer)
        add_record(route53, zone_id, cname(f"{DOMAIN}.", "old.example.net"))

        assert needs_update_record(route53, zone_id, DOMAIN, DIST_DOMAIN, confirm) is answer
        confirm.assert_called_once()
        assert "old.example.net" in confirm.call_args.args[0]

    def test_alias_elsewhere_asks(self):
        confirm = MagicMock(return_value=False)
        route53 = MagicMock()
        route53.list_resource_record_sets.return_value = {
            "ResourceRecordSets": [
                {"Name": f"{DOMAIN}.", "Type": "A", "AliasTarget": {"HostedZoneId": "ZOTHER", "DNSName": "old.example.net."}}
            ]
        }

        assert needs_update_record(route53, "Z1", DOMAIN, DIST_DOMAIN, confirm) is False
        assert "ZOTHER:old.example.net." in confirm.call_args.args[0]
        route53.list_resource_record_sets.assert_called_once_with(HostedZoneId="Z1", StartRecordName=f"{DOMAIN}.")


class TestUpdateRecord:
    """Tests for the record upserts."""

    def test_upsert_alias(self, route53, zone_id):
        update_record(route53, zone_id, DOMAIN, DIST_DOMAIN)
        update_record(route53, zone_id, DOMAIN, DIST_DOMAIN)

        records = get_records(route53, zone_id, f"{DOMAIN}.", "A")
        assert len(records) == 1
        assert records[0]["AliasTarget"]["HostedZoneId"] == CLOUDFRONT_HOSTED_ZONE_ID
        assert records[0]["AliasTarget"]["DNSName"] == f"{DIST_DOMAIN}."

    def test_certificate_validation_record(self, route53, zone_id):
        record = {"Name": f"_x.{DOMAIN}.", "Type": "CNAME", "Value": "_y.acm-validations.aws."}

        create_certificate_validation_record(route53, record, zone_id)

        records = get_records(route53, zone_id, f"_x.{DOMAIN}.", "CNAME")
        assert records[0]["TTL"] == 3600
        assert records[0]["ResourceRecords"] == [{"Value": "_y.acm-validations.aws."}]
