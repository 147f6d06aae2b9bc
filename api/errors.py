"""Translation of domain errors into HTTP responses."""
import logging

from fastapi import HTTPException, status

from bounties import BountyNotFoundError, InvalidTransitionError, ValidationError
from database.exceptions import DatabaseError
from payments import AllocationError, InvalidAssetError, NotFundableError
from processor import PriceFeedError, ProcessorError

logger = logging.getLogger(__name__)

def to_http_error(error: Exception) -> HTTPException:
    """Map a domain error to the HTTPException the API answers with."""
    if isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, BountyNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, (InvalidTransitionError, NotFundableError, InvalidAssetError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, (AllocationError, ProcessorError, PriceFeedError)):
        logger.error(f"Upstream service error: {error}")
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(error, DatabaseError):
        logger.error(f"Database error: {error}")
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        logger.exception(f"Unexpected error: {error}")
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )
    return HTTPException(status_code=code, detail=str(error))
