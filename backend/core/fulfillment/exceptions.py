import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from fulfillment.errors import FulfillmentError
from fulfillment.logging import mask_pii

logger = logging.getLogger(__name__)


def fulfillment_exception_handler(exc, context):
    """DRF exception handler mapping `FulfillmentError` to JSON responses."""

    if isinstance(exc, FulfillmentError):
        view = context.get("view")
        logger.info(
            "fulfillment.api.error view=%s code=%s status=%s message=%s",
            view.__class__.__name__ if view is not None else "",
            exc.code,
            exc.http_status,
            mask_pii(exc.message),
        )
        return Response(exc.as_dict(), status=exc.http_status)

    return exception_handler(exc, context)
