class HarnessError(Exception):
    pass


class BindError(HarnessError):
    pass


class HandlerStartError(HarnessError):
    pass


class ServerConnectionError(HarnessError, ConnectionError):
    pass


class MalformedCookie(HarnessError, ValueError):
    pass


class StatusAssertionError(AssertionError):
    """Response status did not match the session's assertion policy."""

    expectation = "Unexpected status"

    def __init__(
        self,
        status: int,
        method: str | None = None,
        path: str | None = None,
        body: str | None = None,
    ):
        self.status = status
        self.method = method
        self.path = path
        self.body = body
        super().__init__(self._describe())

    def _describe(self) -> str:
        target = f" for {self.method} {self.path}" if self.method and self.path else ""
        message = f"{self.expectation}, received {self.status}{target}"
        if self.body:
            message += f"\n{self.body}"
        return message


class UnexpectedFailureStatus(StatusAssertionError):
    expectation = "Expected a success status (2xx)"


class UnexpectedSuccessStatus(StatusAssertionError):
    expectation = "Expected a failure status (not 2xx)"
