"""Errors raised by the external language model and embedding services."""


class ServiceFailure(Exception):
    """A remote service could not produce a result."""


class ServiceUnavailable(ServiceFailure):
    """The service could not be reached or kept failing after retries."""


class MalformedResponse(Exception):
    """The service replied, but the content cannot be used."""
