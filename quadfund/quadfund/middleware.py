import logging

logger = logging.getLogger('audit')


class UserActivityLoggingMiddleWare:
    """Writes one audit line per request: who, what, outcome, from where."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)

        # JWT authentication runs inside the DRF view, so the user is read after the response.
        user = getattr(request, 'user', None)
        actor = user.email if user is not None and user.is_authenticated else 'anonymous'
        role = getattr(user, 'role', '-') if user is not None and user.is_authenticated else '-'

        logger.info(
            "%s (%s) %s %s -> %s ip=%s",
            actor,
            role,
            request.method,
            request.get_full_path(),
            response.status_code,
            self.get_client_ip(request),
        )
        return response

    def get_client_ip(self, request):
        forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if forwarded_for:
            return forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
