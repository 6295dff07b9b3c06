"""Tests for certificate lookup and creation."""

from unittest.mock import MagicMock

import pytest

from spa_deploy.acm import create_certificate, domain_name_match, get_certificate_arn
from spa_deploy.errors import PreconditionError, WaitTimeoutError
from tests.fakes import DOMAIN, make_waiter_error


def certificate(arn, domain_name, status="ISSUED", alternative_names=None):
    return {
        "Certificate": {
            "CertificateArn": arn,
            "DomainName": domain_name,
            "SubjectAlternativeNames": alternative_names or [domain_name],
            "Status": status,
        }
    }


def acm_with(pages, certificates):
    """pages: list of ARN lists; certificates: ARN -> describe_certificate response."""
    acm = MagicMock()
    responses = []
    for index, arns in enumerate(pages):
        response = {"CertificateSummaryList": [{"CertificateArn": arn} for arn in arns]}
        if index < len(pages) - 1:
            response["NextToken"] = f"token{index + 1}"
        responses.append(response)
    acm.list_certificates.side_effect = responses
    acm.describe_certificate.side_effect = lambda CertificateArn: certificates[CertificateArn]
    return acm


class TestDomainNameMatch:
    """Tests for certificate name matching."""

    def test_exact(self):
        assert domain_name_match("hello.example.com", "hello.example.com")

    def test_wildcard(self):
        assert domain_name_match("*.example.com", "hello.example.com")

    def test_wildcard_other_parent(self):
        assert not domain_name_match("*.example.com", "hello.example2.com")

    def test_wildcard_covers_one_label_only(self):
        assert not domain_name_match("*.example.com", "a.hello.example.com")

    def test_missing_name(self):
        assert not domain_name_match(None, "hello.example.com")


class TestGetCertificateArn:
    """Tests for certificate lookup."""

    def test_issued_on_second_page(self):
        """Certificates are searched across every page."""
        acm = acm_with(
            [["arn:other"], ["arn:match"]],
            {
                "arn:other": certificate("arn:other", "other.com"),
                "arn:match": certificate("arn:match", DOMAIN),
            },
        )

        assert get_certificate_arn(acm, DOMAIN) == "arn:match"
        assert acm.list_certificates.call_args_list[1].kwargs == {"NextToken": "token1"}

    def test_alternative_name_match(self):
        """A subject alternative name covering the domain is a match."""
        acm = acm_with(
            [["arn:san"]],
            {"arn:san": certificate("arn:san", "example.com", alternative_names=["example.com", "*.example.com"])},
        )

        assert get_certificate_arn(acm, DOMAIN) == "arn:san"

    @pytest.mark.parametrize("order", [["arn:pending", "arn:issued"], ["arn:issued", "arn:pending"]])
    def test_issued_preferred_over_pending(self, order):
        """An issued certificate wins over a pending one without waiting."""
        acm = acm_with(
            [order],
            {
                "arn:pending": certificate("arn:pending", DOMAIN, "PENDING_VALIDATION"),
                "arn:issued": certificate("arn:issued", DOMAIN),
            },
        )

        assert get_certificate_arn(acm, DOMAIN) == "arn:issued"
        acm.get_waiter.assert_not_called()

    def test_pending_is_waited_for(self):
        """A pending certificate is returned once validated."""
        acm = acm_with([["arn:pending"]], {"arn:pending": certificate("arn:pending", DOMAIN, "PENDING_VALIDATION")})

        assert get_certificate_arn(acm, DOMAIN) == "arn:pending"
        acm.get_waiter.assert_called_once_with("certificate_validated")
        assert acm.get_waiter.return_value.wait.call_args.kwargs["CertificateArn"] == "arn:pending"

    def test_pending_timeout(self):
        """A certificate never validated ends in WaitTimeoutError."""
        acm = acm_with([["arn:pending"]], {"arn:pending": certificate("arn:pending", DOMAIN, "PENDING_VALIDATION")})
        acm.get_waiter.return_value.wait.side_effect = make_waiter_error("CertificateValidated")

        with pytest.raises(WaitTimeoutError):
            get_certificate_arn(acm, DOMAIN)

    def test_no_match(self):
        """Revoked or unrelated certificates give None."""
        acm = acm_with(
            [["arn:revoked", "arn:other"]],
            {
                "arn:revoked": certificate("arn:revoked", DOMAIN, "REVOKED"),
                "arn:other": certificate("arn:other", "*.example2.com"),
            },
        )

        assert get_certificate_arn(acm, DOMAIN) is None
        acm.get_waiter.assert_not_called()


class TestCreateCertificate:
    """Tests for certificate request and DNS validation."""

    def test_creates_validation_record_and_waits(self):
        """The DNS validation record is written in the hosted zone, then validation is awaited."""
        acm = MagicMock()
        route53 = MagicMock()
        acm.request_certificate.return_value = {"CertificateArn": "arn:new"}
        acm.describe_certificate.return_value = {
            "Certificate": {
                "DomainValidationOptions": [
                    {
                        "DomainName": DOMAIN,
                        "ResourceRecord": {"Name": "_abc.hello.example.com.", "Type": "CNAME", "Value": "_xyz.acm-validations.aws."},
                    }
                ]
            }
        }

        assert create_certificate(acm, route53, DOMAIN, "Z1", delay=0) == "arn:new"

        acm.request_certificate.assert_called_once_with(DomainName=DOMAIN, ValidationMethod="DNS")
        change = route53.change_resource_record_sets.call_args.kwargs
        assert change["HostedZoneId"] == "Z1"
        record = change["ChangeBatch"]["Changes"][0]["ResourceRecordSet"]
        assert record == {
            "Name": "_abc.hello.example.com.",
            "Type": "CNAME",
            "TTL": 3600,
            "ResourceRecords": [{"Value": "_xyz.acm-validations.aws."}],
        }
        acm.get_waiter.assert_called_once_with("certificate_validated")

    def test_no_arn(self):
        acm = MagicMock()
        acm.request_certificate.return_value = {}

        with pytest.raises(PreconditionError):
            create_certificate(acm, MagicMock(), DOMAIN, "Z1", delay=0)

    def test_validation_record_not_ready(self):
        """Validation options without a record for the domain are an error."""
        acm = MagicMock()
        route53 = MagicMock()
        acm.request_certificate.return_value = {"CertificateArn": "arn:new"}
        acm.describe_certificate.return_value = {"Certificate": {"DomainValidationOptions": [{"DomainName": DOMAIN}]}}

        with pytest.raises(PreconditionError):
            create_certificate(acm, route53, DOMAIN, "Z1", delay=0)
        route53.change_resource_record_sets.assert_not_called()
