class RunbookError(Exception):
    """
    Base class for every error raised by the diagnosis pipeline.
    """


class UnknownKindError(RunbookError, ValueError):
    def __init__(self, kind):
        self.kind = kind
        super().__init__(f"Unknown resource kind: {kind!r}")


class CollectionError(RunbookError, RuntimeError):
    """
    Fact gathering failed upstream (transport, auth, missing object).
    The engine never retries and never evaluates a partial bundle.
    """

    def __init__(self, message: str, kind=None, identifier: str | None = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message)


class MalformedRuleError(RunbookError, ValueError):
    """
    A static rule definition could not be parsed or violates the rule contract.
    """

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)
