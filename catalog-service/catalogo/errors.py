class CatalogError(Exception):
    """Base error for catalog operations. `code` travels into failure results."""

    code = "catalog_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BackendUnavailable(CatalogError):
    code = "backend_unavailable"


class RemoteQueryFailed(CatalogError):
    code = "remote_query_failed"


class NotFound(CatalogError):
    code = "not_found"


class InvalidFilter(CatalogError):
    code = "invalid_filter"


class Unauthorized(CatalogError):
    code = "unauthorized"
