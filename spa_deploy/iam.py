import json
import time

import structlog
from botocore.exceptions import ClientError

from spa_deploy.aws import is_not_found

logger = structlog.get_logger()

BASIC_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
# a fresh role cannot be assumed by Lambda right away
ROLE_PROPAGATION_DELAY = 10

ASSUME_ROLE_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": ["lambda.amazonaws.com", "edgelambda.amazonaws.com"]},
            "Action": "sts:AssumeRole",
        }
    ],
}


def get_role_arn_for_basic_lambda_execution(iam, role_name: str, wait_after_create: float = ROLE_PROPAGATION_DELAY) -> str:
    try:
        logger.info("[IAM] Looking for role", role=role_name)
        role = iam.get_role(RoleName=role_name)["Role"]
        logger.info("[IAM] Role found", role=role_name)
        return role["Arn"]
    except ClientError as e:
        if not is_not_found(e):
            raise

    logger.info("[IAM] Role not found, creating it", role=role_name)
    role = iam.create_role(RoleName=role_name, AssumeRolePolicyDocument=json.dumps(ASSUME_ROLE_POLICY))["Role"]
    iam.attach_role_policy(RoleName=role_name, PolicyArn=BASIC_EXECUTION_POLICY_ARN)
    logger.info("[IAM] Role created", role=role_name)

    time.sleep(wait_after_create)
    return role["Arn"]
