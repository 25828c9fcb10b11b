from __future__ import annotations

import hashlib
import hmac
import json
import logging

from dateutil.parser import isoparse
from django.conf import settings
from rest_framework import status as drf_status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from fulfillment.actors import Actor, resolve_correlation_id
from payments.serializers import RefundOrderSerializer
from payments.services import apply_payment_event, refund_order

logger = logging.getLogger(__name__)


def _parse_signature(value: str) -> str:
    raw = (value or "").strip()
    if raw.lower().startswith("sha256="):
        raw = raw.split("=", 1)[1].strip()
    return raw


def _webhook_secret(provider: str) -> str:
    secrets = getattr(settings, "PAYMENT_WEBHOOK_SECRETS", {}) or {}
    return str(secrets.get(provider) or "")


class PaymentWebhookAPIView(APIView):
    """Webhook endpoint for payment providers.

    Callers authenticate with an HMAC-SHA256 signature of the raw body, keyed
    by the per-provider secret. Duplicate deliveries are answered with the
    result stored for the first one.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request, provider: str):
        provider = (provider or "").strip().lower()
        correlation_id = resolve_correlation_id(request)

        raw_body: bytes = request.body or b""
        secret = _webhook_secret(provider)
        if not secret:
            logger.error(
                "payments.webhook.secret_missing provider=%s correlation_id=%s",
                provider,
                correlation_id,
            )
            return Response(
                {"detail": "Webhook secret is not configured.", "code": "WEBHOOK_NOT_CONFIGURED"},
                status=drf_status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        provided = _parse_signature(request.headers.get("X-Payment-Signature", ""))
        expected = hmac.new(
            secret.encode("utf-8"),
            msg=raw_body,
            digestmod=hashlib.sha256,
        ).hexdigest()

        if not provided or not hmac.compare_digest(provided, expected):
            logger.warning(
                "payments.webhook.signature_invalid provider=%s correlation_id=%s",
                provider,
                correlation_id,
            )
            return Response(
                {"detail": "Invalid signature.", "code": "INVALID_SIGNATURE"},
                status=drf_status.HTTP_401_UNAUTHORIZED,
            )

        try:
            payload = json.loads(raw_body.decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning(
                "payments.webhook.json_invalid provider=%s correlation_id=%s",
                provider,
                correlation_id,
            )
            return Response(
                {"detail": "Invalid JSON.", "code": "INVALID_JSON"},
                status=drf_status.HTTP_400_BAD_REQUEST,
            )
        if not isinstance(payload, dict):
            return Response(
                {"detail": "Payload must be a JSON object.", "code": "INVALID_JSON"},
                status=drf_status.HTTP_400_BAD_REQUEST,
            )

        payment_ref = str(payload.get("payment_ref") or payload.get("payment_id") or "").strip()
        status_value = str(payload.get("status") or "").strip()
        event_id = str(payload.get("event_id") or payload.get("id") or "").strip()

        if not payment_ref:
            return Response(
                {"detail": "payment_ref is required.", "code": "INVALID_PAYMENT_EVENT"},
                status=drf_status.HTTP_400_BAD_REQUEST,
            )
        if not status_value:
            return Response(
                {"detail": "status is required.", "code": "INVALID_PAYMENT_EVENT"},
                status=drf_status.HTTP_400_BAD_REQUEST,
            )

        occurred_at = payload.get("occurred_at")
        if occurred_at:
            try:
                payload["occurred_at"] = isoparse(str(occurred_at)).isoformat()
            except ValueError:
                return Response(
                    {"detail": "occurred_at must be an ISO-8601 timestamp.", "code": "INVALID_PAYMENT_EVENT"},
                    status=drf_status.HTTP_400_BAD_REQUEST,
                )

        logger.info(
            "payments.webhook.received provider=%s payment_ref=%s event_id=%s status=%s correlation_id=%s",
            provider,
            payment_ref,
            event_id,
            status_value,
            correlation_id,
        )

        result = apply_payment_event(
            provider=provider,
            event_id=event_id,
            payment_ref=payment_ref,
            status=status_value,
            amount=payload.get("amount"),
            currency=str(payload.get("currency") or ""),
            payload=payload,
            actor=Actor.system(f"payments:{provider}", correlation_id=correlation_id),
        )
        return Response({"ok": True, **result, "correlation_id": correlation_id}, status=drf_status.HTTP_200_OK)


class OrderRefundAPIView(APIView):
    def post(self, request, order_id: int):
        serializer = RefundOrderSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)

        result = refund_order(
            order_id,
            actor=Actor.from_request(request),
            reason=serializer.validated_data.get("reason") or "",
        )
        return Response(result)
