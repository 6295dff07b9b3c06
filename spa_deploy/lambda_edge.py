"""Basic auth in front of the whole distribution, as a Lambda@Edge viewer-request handler."""

import hashlib
import io
import json
import zipfile

import structlog
from botocore.exceptions import ClientError

from spa_deploy.aws import get_all, is_not_found, wait_for
from spa_deploy.errors import PreconditionError
from spa_deploy.iam import get_role_arn_for_basic_lambda_execution

logger = structlog.get_logger()

LAMBDA_PREFIX = "spa-deploy-basic-auth-"
LAMBDA_RUNTIME = "nodejs20.x"
LAMBDA_HANDLER = "simple-auth.handler"
LAMBDA_MAX_WAIT = 300
LAMBDA_POLL_DELAY = 5

# Lambda@Edge does not support environment variables, credentials are baked in the code
LAMBDA_CODE = """
exports.handler = (event, context, callback) => {
  const request = event.Records[0].cf.request;
  const headers = request.headers;

  const authString = "Basic " + Buffer.from(%s).toString("base64");

  if (
    typeof headers.authorization == "undefined" ||
    headers.authorization[0].value != authString
  ) {
    callback(null, {
      status: "401",
      statusDescription: "Unauthorized",
      body: "Unauthorized",
      headers: {
        "www-authenticate": [{ key: "WWW-Authenticate", value: "Basic" }],
      },
    });
    return;
  }

  callback(null, request);
};
"""


def get_function_name(domain_name: str) -> str:
    return f"{LAMBDA_PREFIX}{domain_name.replace('.', '-')}"


def validate_credentials(credentials: str):
    username, sep, password = credentials.partition(":")
    if not sep or not username or not password:
        raise PreconditionError('Credentials must be of the form "username:password"')


def get_description(credentials: str) -> str:
    fingerprint = hashlib.sha256(credentials.encode("utf-8")).hexdigest()[:16]
    return f"Deployed by spa-deploy to handle basic auth [credentials={fingerprint}]"


def get_zipped_code(credentials: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("simple-auth.js", LAMBDA_CODE % json.dumps(credentials))
    return buffer.getvalue()


def does_function_exist(lambda_, function_name: str) -> bool:
    try:
        logger.info("[Lambda] Searching lambda function", name=function_name)
        lambda_.get_function(FunctionName=function_name)
    except ClientError as e:
        if is_not_found(e):
            logger.info("[Lambda] No lambda found", name=function_name)
            return False
        raise
    logger.info("[Lambda] Lambda function found", name=function_name)
    return True


def get_latest_version(lambda_, function_name: str) -> str:
    def get_page(marker, page):
        params = {"Marker": marker} if marker else {}
        response = lambda_.list_versions_by_function(FunctionName=function_name, **params)
        return response.get("Versions", []), response.get("NextMarker")

    versions = [version["Version"] for version in get_all(get_page) if version["Version"] != "$LATEST"]
    if not versions:
        raise PreconditionError(f"Lambda function {function_name} has no published version")
    return max(versions, key=int)


def _unqualified(function_arn: str) -> str:
    # arn:aws:lambda:<region>:<account>:function:<name>[:<qualifier>]
    return ":".join(function_arn.split(":")[:7])


def _wait_for_version(lambda_, function_name: str, version: str):
    wait_for(
        lambda_,
        "published_version_active",
        max_wait=LAMBDA_MAX_WAIT,
        delay=LAMBDA_POLL_DELAY,
        description=f"Lambda {function_name}:{version}",
        FunctionName=function_name,
        Qualifier=version,
    )


def _wait_for_update(lambda_, function_name: str):
    wait_for(
        lambda_,
        "function_updated",
        max_wait=LAMBDA_MAX_WAIT,
        delay=LAMBDA_POLL_DELAY,
        description=f"Lambda {function_name}",
        FunctionName=function_name,
    )


def deploy_basic_auth_lambda(lambda_, iam, domain_name: str, credentials: str) -> str:
    """Create or update the basic auth function and return its versioned ARN.

    The description holds the credentials fingerprint and is written only once
    the new code is published, so an interrupted update is retried next run.
    """
    validate_credentials(credentials)
    name = get_function_name(domain_name)
    description = get_description(credentials)

    if not does_function_exist(lambda_, name):
        role_arn = get_role_arn_for_basic_lambda_execution(iam, name)
        logger.info("[Lambda] Creating lambda function", name=name)
        response = lambda_.create_function(
            FunctionName=name,
            Runtime=LAMBDA_RUNTIME,
            Role=role_arn,
            Handler=LAMBDA_HANDLER,
            Code={"ZipFile": get_zipped_code(credentials)},
            Description=description,
            Publish=True,
        )
        _wait_for_version(lambda_, name, response["Version"])
        logger.info("[Lambda] Lambda created", name=name, version=response["Version"])
        return f"{_unqualified(response['FunctionArn'])}:{response['Version']}"

    logger.info("[Lambda] Checking if credentials changed", name=name)
    configuration = lambda_.get_function_configuration(FunctionName=name)
    function_arn = _unqualified(configuration["FunctionArn"])

    if configuration.get("Description") == description:
        logger.info("[Lambda] Credentials did not change", name=name)
        return f"{function_arn}:{get_latest_version(lambda_, name)}"

    logger.info("[Lambda] Credentials changed, updating code", name=name)
    response = lambda_.update_function_code(FunctionName=name, ZipFile=get_zipped_code(credentials), Publish=True)
    _wait_for_version(lambda_, name, response["Version"])
    _wait_for_update(lambda_, name)

    lambda_.update_function_configuration(FunctionName=name, Description=description)
    _wait_for_update(lambda_, name)

    logger.info("[Lambda] Code updated", name=name, version=response["Version"])
    return f"{function_arn}:{response['Version']}"
