from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status, permissions
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi
import logging

from .serializers import BankWebhookSerializer
from .services import TransferExecutor


logger = logging.getLogger(__name__)


class BankWebhookView(APIView):
    """
    Transfer state changes pushed by the bank provider.
    Unauthenticated; trusted only after the X-Signature HMAC check.
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @swagger_auto_schema(
        operation_summary="Receive a bank transfer webhook",
        request_body=BankWebhookSerializer,
        manual_parameters=[
            openapi.Parameter(
                'X-Signature',
                openapi.IN_HEADER,
                description="Base64 HMAC-SHA256 of the raw body",
                type=openapi.TYPE_STRING,
                required=True,
            )
        ],
        responses={200: "Processed or already processed", 400: "Invalid payload", 401: "Invalid signature"}
    )
    def post(self, request):
        raw_body = request.body
        signature = request.headers.get('X-Signature', '')
        result = TransferExecutor().handle_bank_webhook(raw_body, signature)
        return Response(result, status=status.HTTP_200_OK)
