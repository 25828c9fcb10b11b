from fulfillment.actors import resolve_correlation_id


class CorrelationIdMiddleware:
    """Attach a correlation id to every request and echo it on the response."""

    header_name = "X-Correlation-ID"

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.correlation_id = resolve_correlation_id(request)
        response = self.get_response(request)
        response[self.header_name] = request.correlation_id
        return response
