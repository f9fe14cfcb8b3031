from django.contrib import admin

from .models import Proposal, Vote


class VoteInline(admin.TabularInline):
    model = Vote
    extra = 0
    readonly_fields = ('user', 'approve', 'comment', 'created_at')
    can_delete = False


@admin.register(Proposal)
class ProposalAdmin(admin.ModelAdmin):
    list_display = ('id', 'project', 'milestone', 'amount', 'transfer_type', 'status', 'ai_score', 'current_approvals', 'created_at')
    list_filter = ('status', 'transfer_type')
    search_fields = ('project__name', 'milestone__title', 'transaction_reference')
    # Status moves only through ProposalService.
    readonly_fields = (
        'status', 'ai_score', 'ai_notes', 'current_approvals', 'current_rejections',
        'decided_by', 'decided_at', 'transaction_reference', 'error_message', 'executed_at',
    )
    inlines = [VoteInline]
