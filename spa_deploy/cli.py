"""Command line entry point: ``spa-deploy deploy <domainName[/subfolder]>``."""

import argparse
import os
import sys
from typing import Dict, List

from spa_deploy.aws import DEFAULT_BUCKET_REGION, create_services
from spa_deploy.deploy import DeployOptions, deploy
from spa_deploy.log import configure_logging
from spa_deploy.prompt import get_confirm, is_ci_environment

FUNCTION_EVENT_TYPES = ("viewer-request", "viewer-response")


def parse_function_associations(values: List[str]) -> Dict[str, List[str]]:
    """``["viewer-request=a,b", "viewer-response=c"]`` -> ``{"viewer-request": ["a", "b"], ...}``."""
    associations: Dict[str, List[str]] = {}
    for value in values:
        event_type, sep, names = value.partition("=")
        event_type = event_type.strip()
        if not sep or event_type not in FUNCTION_EVENT_TYPES:
            raise argparse.ArgumentTypeError(
                f'invalid function association "{value}", expected <{"|".join(FUNCTION_EVENT_TYPES)}>=name[,name...]'
            )
        associations.setdefault(event_type, []).extend(name.strip() for name in names.split(",") if name.strip())
    return associations


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spa-deploy",
        description="Deploy a single page app on AWS: S3 bucket, CloudFront distribution, ACM certificate and Route53 record.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""examples:
  %(prog)s deploy app.example.com
      Upload ./build to the app.example.com bucket, served by CloudFront on https://app.example.com.

  %(prog)s deploy app.example.com/my-branch --directory dist --no-default-root-object
      Deploy a feature branch in the my-branch folder of the same bucket.

  %(prog)s deploy app.example.com --private-bucket --wait
      Keep the bucket private, readable by CloudFront only, and wait for the deploy to be live.

ownership:
  Nothing is stored locally. The bucket and the distribution are found by name,
  alias and the managed-by-spa-deploy tag on every run, and each step only
  writes when the remote state differs from the wanted one.""",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Deploy a single page app on AWS")
    deploy_parser.add_argument(
        "domain_name",
        metavar="domainName",
        help='The domain name on which the SPA will be accessible, e.g. "app.example.com". A path can be '
        'added ("app.example.com/some-branch") to deploy several versions of the app in the same bucket.',
    )
    deploy_parser.add_argument(
        "--wait", action="store_true",
        help="Wait for the CloudFront distribution to be deployed and the cache invalidation to be completed.",
    )
    deploy_parser.add_argument(
        "--directory", default="build",
        help="The directory where the static files have been generated. It must contain an index.html file (default: build).",
    )
    deploy_parser.add_argument(
        "--cache-invalidation", default="/*",
        help="Comma separated paths to invalidate on CloudFront (default: /*).",
    )
    deploy_parser.add_argument(
        "--cache-busted-prefix",
        help="A folder whose files use a cache busting strategy and get a one year cache.",
    )
    deploy_parser.add_argument(
        "--credentials",
        help='Enable basic auth on the whole bucket, "username:password". Defaults to $SPA_DEPLOY_CREDENTIALS.',
    )
    deploy_parser.add_argument(
        "--no-prompt", action="store_true",
        help="Never prompt. Questions are then answered with --yes, or refused (also the case when CI=true).",
    )
    deploy_parser.add_argument(
        "--yes", action="store_true",
        help="Approve every question: adopting an untagged bucket, overwriting a DNS record.",
    )
    deploy_parser.add_argument(
        "--private-bucket", action="store_true",
        help="Block public access to the bucket and let CloudFront read it through an Origin Access Control.",
    )
    deploy_parser.add_argument(
        "--no-default-root-object", action="store_true",
        help="Remove the default root object and route each folder to its own index.html with a CloudFront function.",
    )
    deploy_parser.add_argument(
        "--redirect-403-to-root", action="store_true",
        help="Serve /index.html with a 200 when the origin answers 403 (deep links on a private bucket).",
    )
    deploy_parser.add_argument(
        "--object-expiration-days", type=int,
        help="Expire the bucket objects after this many days (useful for branch deployments).",
    )
    deploy_parser.add_argument(
        "--function", action="append", default=[], dest="functions", metavar="EVENT=NAME[,NAME]",
        help="Associate published CloudFront functions with the default cache behavior. Can be repeated.",
    )
    deploy_parser.add_argument(
        "--alias", action="append", default=[], dest="aliases",
        help="Additional domain name served by the distribution. Can be repeated.",
    )
    deploy_parser.add_argument(
        "--region", default=os.environ.get("SPA_DEPLOY_BUCKET_REGION", DEFAULT_BUCKET_REGION),
        help=f"AWS region of the S3 bucket (default: {DEFAULT_BUCKET_REGION}). "
        "ACM certificates and Lambda@Edge always live in us-east-1.",
    )
    deploy_parser.add_argument("--profile", help="AWS profile to use.")
    deploy_parser.add_argument("--verbose", action="store_true", help="Show debug logs.")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        function_associations = parse_function_associations(args.functions)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    configure_logging(args.verbose)

    ci = is_ci_environment()
    options = DeployOptions(
        directory=args.directory,
        wait=args.wait,
        cache_invalidations=args.cache_invalidation,
        cache_busted_prefix=args.cache_busted_prefix,
        credentials=args.credentials or os.environ.get("SPA_DEPLOY_CREDENTIALS"),
        no_prompt=args.no_prompt,
        should_block_bucket_public_access=args.private_bucket,
        no_default_root_object=args.no_default_root_object,
        redirect_403_to_root=args.redirect_403_to_root,
        object_expiration_days=args.object_expiration_days,
        function_associations=function_associations,
        additional_aliases=args.aliases,
    )
    confirm = get_confirm(interactive=not (ci or args.no_prompt), assume_yes=args.yes)

    try:
        services = create_services(args.region, args.profile)
        result = deploy(services, args.domain_name, options, confirm, ci=ci)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        print(f"Deploy failed: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"\nSite URL: https://{result.domain_name}")
    print("Done!")
    sys.exit(0)


if __name__ == "__main__":
    main()
