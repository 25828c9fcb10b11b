from django.urls import path

from payments.views import OrderRefundAPIView, PaymentWebhookAPIView

urlpatterns = [
    path("payments/webhook/<slug:provider>/", PaymentWebhookAPIView.as_view(), name="payment-webhook"),
    path("orders/<int:order_id>/refund/", OrderRefundAPIView.as_view(), name="order-refund"),
]
