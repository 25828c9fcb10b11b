from django.urls import path

from transfers.views import (
    TicketTransferInitiateAPIView,
    TransferAcceptAPIView,
    TransferCancelAPIView,
    TransferRejectAPIView,
)

urlpatterns = [
    path("tickets/<int:ticket_id>/transfers/", TicketTransferInitiateAPIView.as_view(), name="ticket-transfer-initiate"),
    path("transfers/<int:transfer_id>/accept/", TransferAcceptAPIView.as_view(), name="transfer-accept"),
    path("transfers/<int:transfer_id>/reject/", TransferRejectAPIView.as_view(), name="transfer-reject"),
    path("transfers/<int:transfer_id>/cancel/", TransferCancelAPIView.as_view(), name="transfer-cancel"),
]
