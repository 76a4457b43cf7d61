"""Response status assertion policy.

The decision (does this status pass?) is kept apart from its effect
(aborting the test). check_status only returns the failure; the request
session decides to raise it.
"""

from enum import Enum

from .exceptions import (
    StatusAssertionError,
    UnexpectedFailureStatus,
    UnexpectedSuccessStatus,
)


class AssertionPolicy(Enum):
    """What a request session expects of each response status."""

    EXPECT_SUCCESS = "expect_success"  # 2xx passes, anything else fails
    EXPECT_FAILURE = "expect_failure"  # anything but 2xx passes
    NO_ASSERTION = "no_assertion"  # every status passes


def is_success(status: int) -> bool:
    return 200 <= status <= 299


def check_status(
    policy: AssertionPolicy,
    status: int,
    *,
    method: str | None = None,
    path: str | None = None,
    body: str | None = None,
) -> StatusAssertionError | None:
    """Decide whether a response status satisfies the policy.

    Args:
        policy: Policy in force for the request
        status: HTTP status code received
        method: Request method, used only in the failure message
        path: Request path, used only in the failure message
        body: Response body excerpt, used only in the failure message

    Returns:
        None when the status passes, otherwise the assertion error to raise
    """
    if policy is AssertionPolicy.NO_ASSERTION:
        return None

    success = is_success(status)

    if policy is AssertionPolicy.EXPECT_SUCCESS and not success:
        return UnexpectedFailureStatus(status, method=method, path=path, body=body)

    if policy is AssertionPolicy.EXPECT_FAILURE and success:
        return UnexpectedSuccessStatus(status, method=method, path=path, body=body)

    return None
