from django.db import models
from django.contrib.auth import get_user_model
from auditlog.registry import auditlog

User = get_user_model()


class BankAccount(models.Model):
    """
    A bank account registered by a user. Withdrawal proposals may only pay out
    to a verified account with the ``withdrawal`` purpose.
    """
    PURPOSE_CHOICES = (
        ('withdrawal', 'Withdrawal'),
        ('donation', 'Donation'),
    )

    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name='bank_accounts')
    account_name = models.CharField(max_length=255, help_text="Account holder's full name")
    account_number = models.CharField(max_length=64)
    routing_number = models.CharField(max_length=32, blank=True)
    bank_name = models.CharField(max_length=100, blank=True)
    bank_country = models.CharField(max_length=2, default='US', help_text="ISO country code")
    swift_code = models.CharField(max_length=11, blank=True)
    currency = models.CharField(max_length=3, default='USD')
    purpose = models.CharField(max_length=20, choices=PURPOSE_CHOICES, default='withdrawal')
    is_verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Bank Account"
        verbose_name_plural = "Bank Accounts"

    def __str__(self):
        return f"{self.bank_name or 'Bank'} – {self.account_name} (****{self.account_number[-4:]})"


class Transfer(models.Model):
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
    )
    TERMINAL_STATUSES = ('completed', 'failed')

    proposal = models.ForeignKey('proposals.Proposal', on_delete=models.PROTECT, related_name='transfers')
    transfer_type = models.CharField(max_length=10, default='bank')
    provider = models.CharField(max_length=50, blank=True)  # e.g., 'wise'
    provider_reference = models.CharField(max_length=255, unique=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    amount = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default='USD')
    failure_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.provider}:{self.provider_reference} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES


class WebhookEvent(models.Model):
    """
    Stores processed webhook event IDs to ensure idempotency.
    """
    provider = models.CharField(max_length=50)
    event_id = models.CharField(max_length=255, unique=True)
    received_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.provider}:{self.event_id}"


auditlog.register(Transfer)
auditlog.register(BankAccount, exclude_fields=['account_number', 'routing_number'])
