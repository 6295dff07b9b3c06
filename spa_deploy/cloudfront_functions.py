"""CloudFront Functions: name resolution and the no-default-root-object redirect."""

from typing import Dict, List, Optional

import structlog

from spa_deploy.aws import get_all
from spa_deploy.errors import PreconditionError

logger = structlog.get_logger()

NO_DEFAULT_ROOT_OBJECT_REDIRECTION_FUNCTION_NAME = "spa-deploy-no-default-root-object"
# Bump to publish a new function body next to the old one (blue/green)
NO_DEFAULT_ROOT_OBJECT_REDIRECTION_COLOR = "yellow"
FUNCTION_RUNTIME = "cloudfront-js-2.0"

NO_DEFAULT_ROOT_OBJECT_FUNCTIONS = {
    "yellow": """
async function handler(event) {
  const request = event.request
  const uri = request.uri

  if (uri.endsWith('index.html/') || uri.endsWith('index.html')) {
    return request
  }

  // keep a slash before the hash router's "#/" to avoid the "url.com/branch#/path" case
  if (!uri.endsWith('/')) {
    return {
      statusCode: 302,
      statusDescription: 'Found',
      headers: {
        location: {
          value: request.uri + '/',
        },
      },
    }
  }

  request.uri += 'index.html'

  return request
}
""",
}


def get_redirection_function_name(color: str = NO_DEFAULT_ROOT_OBJECT_REDIRECTION_COLOR) -> str:
    return f"{NO_DEFAULT_ROOT_OBJECT_REDIRECTION_FUNCTION_NAME}_{color}"


def list_functions(cloudfront, stage: Optional[str] = None) -> List[dict]:
    def get_page(marker, page):
        params = {}
        if marker:
            params["Marker"] = marker
        if stage:
            params["Stage"] = stage
        function_list = cloudfront.list_functions(**params).get("FunctionList", {})
        return function_list.get("Items", []), function_list.get("NextMarker")

    return get_all(get_page)


def resolve_function_arns(cloudfront, names: List[str]) -> Dict[str, str]:
    """Map each function name to the ARN of its most recently modified LIVE version."""
    latest = {}
    for function in list_functions(cloudfront, stage="LIVE"):
        metadata = function.get("FunctionMetadata", {})
        if function.get("Name") not in names or metadata.get("Stage") != "LIVE":
            continue
        current = latest.get(function["Name"])
        if current is None or metadata["LastModifiedTime"] > current["LastModifiedTime"]:
            latest[function["Name"]] = metadata

    missing = [name for name in names if name not in latest]
    if missing:
        raise PreconditionError(f"CloudFront function(s) not found in LIVE stage: {', '.join(missing)}")

    return {name: metadata["FunctionARN"] for name, metadata in latest.items()}


def _find_function(functions: List[dict], name: str) -> Optional[dict]:
    return next((function for function in functions if function.get("Name") == name), None)


def create_and_publish_redirection_function(
    cloudfront, color: str = NO_DEFAULT_ROOT_OBJECT_REDIRECTION_COLOR
) -> str:
    """Return the ARN of the published redirect function, creating it if needed."""
    name = get_redirection_function_name(color)
    functions = list_functions(cloudfront)

    live = [
        function
        for function in functions
        if function.get("Name") == name and function.get("FunctionMetadata", {}).get("Stage") == "LIVE"
    ]
    if live:
        return live[0]["FunctionMetadata"]["FunctionARN"]

    existing = _find_function(functions, name)
    if existing is not None:
        # created by a previous run that did not get to publish it
        etag = cloudfront.describe_function(Name=name, Stage="DEVELOPMENT")["ETag"]
        publish_function(cloudfront, name, etag)
        return existing["FunctionMetadata"]["FunctionARN"]

    logger.info("[CloudFront] Creating function to handle redirection when no default root object", name=name)
    response = cloudfront.create_function(
        Name=name,
        FunctionConfig={
            "Comment": "Redirects to branch specific index.html when no default root object is set",
            "Runtime": FUNCTION_RUNTIME,
        },
        FunctionCode=NO_DEFAULT_ROOT_OBJECT_FUNCTIONS[color].encode("utf-8"),
    )
    function_arn = response.get("FunctionSummary", {}).get("FunctionMetadata", {}).get("FunctionARN")
    if not function_arn:
        raise PreconditionError("Could not create function to handle redirection when no default root object. No ARN returned.")
    if not response.get("ETag"):
        raise PreconditionError("Could not create function to handle redirection when no default root object. No ETag returned.")

    publish_function(cloudfront, name, response["ETag"])
    return function_arn


def publish_function(cloudfront, name: str, etag: str):
    logger.info("[CloudFront] Publishing function", name=name)
    cloudfront.publish_function(Name=name, IfMatch=etag)
