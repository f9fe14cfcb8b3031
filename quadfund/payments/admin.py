from django.contrib import admin
from .models import BankAccount, Transfer, WebhookEvent


@admin.register(BankAccount)
class BankAccountAdmin(admin.ModelAdmin):
    list_display = ('id', 'owner', 'account_name', 'bank_name', 'currency', 'purpose', 'is_verified', 'created_at')
    list_filter = ('purpose', 'is_verified', 'currency')
    search_fields = ('owner__email', 'account_name', 'bank_name')


@admin.register(Transfer)
class TransferAdmin(admin.ModelAdmin):
    list_display = ('id', 'proposal', 'transfer_type', 'provider', 'provider_reference', 'amount', 'status', 'created_at')
    list_filter = ('provider', 'transfer_type', 'status')
    search_fields = ('provider_reference', 'proposal__project__name')
    readonly_fields = ('provider_reference', 'amount', 'currency', 'completed_at')


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('provider', 'event_id', 'received_at')
    list_filter = ('provider',)
    search_fields = ('event_id',)
