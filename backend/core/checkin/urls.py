from django.urls import path

from checkin.views import (
    EventRecentScansAPIView,
    EventScanAPIView,
    EventScanStatsAPIView,
    TicketUndoCheckinAPIView,
)

urlpatterns = [
    path("events/<int:event_id>/scan/", EventScanAPIView.as_view(), name="event-scan"),
    path("events/<int:event_id>/scan-stats/", EventScanStatsAPIView.as_view(), name="event-scan-stats"),
    path("events/<int:event_id>/recent-scans/", EventRecentScansAPIView.as_view(), name="event-recent-scans"),
    path("tickets/<int:ticket_id>/undo-checkin/", TicketUndoCheckinAPIView.as_view(), name="ticket-undo-checkin"),
]
