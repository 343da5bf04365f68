"""Translation of backend failures into HTTP responses."""

import logging
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "The service is temporarily unavailable, please try again in a moment"

def service_unavailable(operation: str, error: Exception) -> HTTPException:
    """Log a backend failure and build the 503 returned to the client.

    Requests are not retried; the client decides whether to try again.
    """
    logger.error(f"{operation} failed: {error}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=UNAVAILABLE_MESSAGE
    )

def bad_request(error: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))

def not_found(error: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))

def forbidden(error: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
