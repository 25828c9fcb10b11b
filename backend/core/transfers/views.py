from __future__ import annotations

from datetime import timedelta

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from fulfillment.actors import Actor
from transfers.serializers import (
    CancelTransferSerializer,
    InitiateTransferSerializer,
    TransferTokenSerializer,
)
from transfers.services import accept_transfer, cancel_transfer, initiate_transfer, reject_transfer


class TicketTransferInitiateAPIView(APIView):
    def post(self, request, ticket_id: int):
        serializer = InitiateTransferSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        ttl_hours = data.get("ttl_hours")
        initiation = initiate_transfer(
            ticket_id,
            data["to_email"],
            actor=Actor.from_request(request),
            ttl=timedelta(hours=ttl_hours) if ttl_hours else None,
        )
        return Response(initiation.as_dict(), status=status.HTTP_201_CREATED)


class TransferAcceptAPIView(APIView):
    # The one-time token authenticates the recipient.
    permission_classes = [AllowAny]

    def post(self, request, transfer_id: int):
        serializer = TransferTokenSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)

        outcome = accept_transfer(
            transfer_id,
            serializer.validated_data["token"],
            actor=Actor.from_request(request),
        )
        return Response(outcome.as_dict())


class TransferRejectAPIView(APIView):
    permission_classes = [AllowAny]

    def post(self, request, transfer_id: int):
        serializer = TransferTokenSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)

        outcome = reject_transfer(
            transfer_id,
            serializer.validated_data["token"],
            actor=Actor.from_request(request),
        )
        return Response(outcome.as_dict())


class TransferCancelAPIView(APIView):
    def post(self, request, transfer_id: int):
        serializer = CancelTransferSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)

        outcome = cancel_transfer(
            transfer_id,
            actor=Actor.from_request(request),
            reason=serializer.validated_data.get("reason") or "",
        )
        return Response(outcome.as_dict())
