"""Deploy a single page app on S3 + CloudFront, with its certificate and DNS record."""

__version__ = "1.0.0"
