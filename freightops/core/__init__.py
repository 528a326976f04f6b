from freightops.core.config import settings
from freightops.core.exceptions import (
    LogisticsError,
    ApiError,
    AuthError,
    ValidationError,
    RateLimitError,
    ServerError,
    NetworkError,
    TokenMissingError,
)
