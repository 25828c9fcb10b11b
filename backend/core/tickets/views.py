from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from fulfillment.actors import Actor
from tickets.issuance import issue_tickets_for_order
from tickets.serializers import TicketInstanceSerializer, VoidTicketSerializer
from tickets.services import void_ticket


class OrderIssueTicketsAPIView(APIView):
    def post(self, request, order_id: int):
        result = issue_tickets_for_order(order_id, actor=Actor.from_request(request))
        code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
        return Response(result.as_dict(), status=code)


class TicketVoidAPIView(APIView):
    def post(self, request, ticket_id: int):
        serializer = VoidTicketSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)

        ticket = void_ticket(
            ticket_id,
            actor=Actor.from_request(request),
            reason=serializer.validated_data.get("reason") or "",
        )
        return Response(TicketInstanceSerializer(ticket).data)
