"""Yes/no confirmation gates.

Reconcilers never read stdin themselves: they receive a ``confirm(message,
default)`` callable. Interactive runs get :func:`ask`, CI runs get
:func:`auto_approve` or :func:`auto_reject`.
"""

import os
from typing import Callable

import structlog

from spa_deploy.errors import UserDeclinedError

logger = structlog.get_logger()

Confirm = Callable[[str, bool], bool]

TRUTHY = ("1", "true", "yes", "y")


def ask(message: str, default: bool = False) -> bool:
    suffix = "[Y/n]" if default else "[y/N]"
    answer = input(f"\n{message} {suffix} ").strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def auto_approve(message: str, default: bool = False) -> bool:
    logger.info("Auto-approved", question=message)
    return True


def auto_reject(message: str, default: bool = False) -> bool:
    logger.warning("Auto-rejected, run with --yes to approve", question=message)
    return False


def is_ci_environment() -> bool:
    return os.environ.get("CI", "").strip().lower() in TRUTHY


def get_confirm(interactive: bool, assume_yes: bool) -> Confirm:
    if assume_yes:
        return auto_approve
    if interactive:
        return ask
    return auto_reject


def predeploy_prompt(ci: bool, no_prompt: bool, confirm: Confirm = ask):
    if ci or no_prompt:
        return

    logger.info("If you don't want this message to prompt, set CI=true in your environment or use --no-prompt")
    if not confirm(
        "It looks like you're deploying from a non CI environment. "
        "Are you sure you built the SPA correctly (env variables, tests, ...)?",
        False,
    ):
        raise UserDeclinedError("deploy aborted")
