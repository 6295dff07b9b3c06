"""Pytest configuration and fixtures."""

import os
from unittest.mock import MagicMock

import pytest
from moto import mock_aws

from spa_deploy.aws import AwsServices, create_services
from tests.fakes import REGION

os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")


@pytest.fixture
def services():
    """AwsServices whose clients are all mocks."""
    return AwsServices(
        s3=MagicMock(),
        cloudfront=MagicMock(),
        acm=MagicMock(),
        route53=MagicMock(),
        lambda_=MagicMock(),
        iam=MagicMock(),
        bucket_region=REGION,
    )


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_PROFILE", raising=False)


@pytest.fixture
def mocked_aws(aws_credentials):
    """Every boto3 client created in the test talks to moto."""
    # the Lambda execution role attaches an AWS managed policy
    with mock_aws(config={"iam": {"load_aws_managed_policies": True}}):
        yield


@pytest.fixture
def aws_services(mocked_aws):
    """Real clients on moto, except ACM and Lambda whose issuance and publication moto does not model."""
    aws = create_services(REGION)
    aws.acm = MagicMock()
    aws.lambda_ = MagicMock()
    return aws


@pytest.fixture
def no_wait(monkeypatch):
    """Replace the CloudFront waiters, moto distributions are usable right away."""
    wait_for = MagicMock()
    monkeypatch.setattr("spa_deploy.cloudfront.wait_for", wait_for)
    return wait_for


@pytest.fixture
def spa_folder(tmp_path):
    """A built SPA with an index.html and hashed assets."""
    (tmp_path / "index.html").write_text("<html></html>")
    (tmp_path / "static").mkdir()
    (tmp_path / "static" / "main.abc123.js").write_text("console.log('hello')")
    (tmp_path / "static" / "main.abc123.css").write_text("body {}")
    return tmp_path


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip the fixed settle delays."""
    monkeypatch.setattr("time.sleep", lambda seconds: None)
