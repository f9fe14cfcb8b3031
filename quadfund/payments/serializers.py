from rest_framework import serializers

from .models import BankAccount, Transfer


# Provider event names mapped to transfer statuses.
WISE_EVENT_STATUSES = {
    'TRANSFER.FUNDS_CONVERTED': 'processing',
    'TRANSFER.OUTGOING_PAYMENT_SENT': 'sent',
    'TRANSFER.COMPLETED': 'completed',
    'TRANSFER.CANCELLED': 'failed',
    'TRANSFER.FAILED': 'failed',
}

WEBHOOK_STATUS_CHOICES = ('pending', 'processing', 'sent', 'completed', 'failed')


class BankWebhookSerializer(serializers.Serializer):
    """
    Transfer state change delivered by the bank provider.

    Either ``new_status`` is given directly or it is derived from a known
    provider ``event_type`` such as ``TRANSFER.COMPLETED``.
    """
    provider_reference = serializers.CharField(max_length=255)
    event_type = serializers.CharField(max_length=100)
    new_status = serializers.ChoiceField(choices=WEBHOOK_STATUS_CHOICES, required=False)
    reason = serializers.CharField(required=False, allow_blank=True)
    event_id = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate(self, attrs):
        if not attrs.get('new_status'):
            status = WISE_EVENT_STATUSES.get(attrs['event_type'])
            if status is None:
                raise serializers.ValidationError(
                    {'new_status': f"Unknown event type {attrs['event_type']!r} and no new_status given."}
                )
            attrs['new_status'] = status
        return attrs


class TransferSerializer(serializers.ModelSerializer):
    class Meta:
        model = Transfer
        fields = [
            'id', 'transfer_type', 'provider', 'provider_reference', 'status',
            'amount', 'currency', 'failure_reason', 'created_at', 'completed_at',
        ]
        read_only_fields = fields


class BankAccountSummarySerializer(serializers.ModelSerializer):
    account_number = serializers.SerializerMethodField()

    class Meta:
        model = BankAccount
        fields = ['id', 'account_name', 'bank_name', 'account_number', 'currency', 'purpose', 'is_verified']
        read_only_fields = fields

    def get_account_number(self, obj):
        return f"****{obj.account_number[-4:]}"
