from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from checkin.serializers import ScanRequestSerializer, UndoCheckinSerializer
from checkin.services import (
    RECENT_SCANS_DEFAULT_LIMIT,
    get_recent_scans,
    get_scan_stats,
    scan,
    undo_check_in,
)
from fulfillment.actors import Actor


class EventScanAPIView(APIView):
    def post(self, request, event_id: int):
        serializer = ScanRequestSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        actor = Actor.from_request(request)
        outcome = scan(
            event_id,
            data["token"],
            actor=actor,
            device_id=data.get("device_id") or "",
        )
        return Response(outcome.as_dict(), status=status.HTTP_200_OK)


class TicketUndoCheckinAPIView(APIView):
    def post(self, request, ticket_id: int):
        serializer = UndoCheckinSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)

        payload = undo_check_in(
            ticket_id,
            actor=Actor.from_request(request),
            reason=serializer.validated_data.get("reason") or "",
        )
        return Response(payload, status=status.HTTP_200_OK)


class EventScanStatsAPIView(APIView):
    def get(self, request, event_id: int):
        try:
            window_seconds = int(request.query_params.get("window", "60"))
        except ValueError:
            window_seconds = 60
        return Response(
            get_scan_stats(event_id, actor=Actor.from_request(request), window_seconds=window_seconds)
        )


class EventRecentScansAPIView(APIView):
    def get(self, request, event_id: int):
        limit = request.query_params.get("limit", RECENT_SCANS_DEFAULT_LIMIT)
        results = get_recent_scans(event_id, actor=Actor.from_request(request), limit=limit)
        return Response({"event_id": event_id, "results": results})
