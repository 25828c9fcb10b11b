from django.test import TestCase


class CorrelationIdMiddlewareTests(TestCase):
    def test_echoes_incoming_correlation_id(self):
        response = self.client.get("/healthz/", HTTP_X_CORRELATION_ID="corr-42")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["X-Correlation-ID"], "corr-42")

    def test_falls_back_to_request_id_then_generates_one(self):
        response = self.client.get("/healthz/", HTTP_X_REQUEST_ID="req-7")
        self.assertEqual(response["X-Correlation-ID"], "req-7")

        response = self.client.get("/healthz/")
        self.assertTrue(response["X-Correlation-ID"])
