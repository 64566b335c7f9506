from fastapi import status

class BaseAppException(Exception):
    def __init__(self, code: str, message: str, http_status: int):
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)

class ValidationAppError(BaseAppException):
    def __init__(self, code: str, message: str):
        super().__init__(code, message, status.HTTP_400_BAD_REQUEST)

class AuthorizationRequiredError(BaseAppException):
    """Provider credential is missing, revoked or cannot be refreshed."""
    def __init__(self, message: str = "authorization required"):
        super().__init__("AUTH_REQUIRED", message, status.HTTP_401_UNAUTHORIZED)

class ProviderError(BaseAppException):
    def __init__(self, code: str, message: str):
        super().__init__(code, message, status.HTTP_502_BAD_GATEWAY)

class TokenExpiredError(ProviderError):
    """The provider no longer accepts the stored sync token (HTTP 410)."""
    def __init__(self, message: str = "sync token is no longer valid"):
        super().__init__("SYNC_TOKEN_EXPIRED", message)

class TransientProviderError(ProviderError):
    def __init__(self, message: str = "calendar provider unavailable"):
        super().__init__("PROVIDER_UNAVAILABLE", message)

class CacheUnavailableError(BaseAppException):
    def __init__(self, message: str = "cache store unavailable"):
        super().__init__("CACHE_UNAVAILABLE", message, status.HTTP_503_SERVICE_UNAVAILABLE)

class InternalServerError(BaseAppException):
    def __init__(self, message: str = "internal error"):
        super().__init__("INTERNAL_ERROR", message, status.HTTP_500_INTERNAL_SERVER_ERROR)
