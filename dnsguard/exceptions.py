from __future__ import annotations


class DnsGuardError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(DnsGuardError):
    status_code = 400


class NotFound(DnsGuardError):
    status_code = 404


class InvalidState(DnsGuardError):
    status_code = 400


class UpstreamError(DnsGuardError):
    status_code = 502

    def __init__(self, message: str, details: list | None = None):
        super().__init__(message)
        self.details = details or []


class ConcurrentUpdateError(DnsGuardError):
    status_code = 409


class StorageUnavailable(DnsGuardError):
    status_code = 503

    def __init__(self, message: str = "Persistent storage is not configured."):
        super().__init__(message)


class NotAuthenticated(DnsGuardError):
    status_code = 401

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message)


class Forbidden(DnsGuardError):
    status_code = 403
