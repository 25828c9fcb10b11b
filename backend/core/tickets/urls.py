from django.urls import path

from tickets.views import OrderIssueTicketsAPIView, TicketVoidAPIView

urlpatterns = [
    path("orders/<int:order_id>/issue/", OrderIssueTicketsAPIView.as_view(), name="order-issue-tickets"),
    path("tickets/<int:ticket_id>/void/", TicketVoidAPIView.as_view(), name="ticket-void"),
]
