# Ben-Or Middleware Package
from .correlation import (
    CorrelationIdMiddleware,
    CorrelationIdFilter,
    get_correlation_id,
    generate_correlation_id,
    correlation_id_var,
    HEADER_NAME,
)

__all__ = [
    "CorrelationIdMiddleware",
    "CorrelationIdFilter",
    "get_correlation_id",
    "generate_correlation_id",
    "correlation_id_var",
    "HEADER_NAME",
]
