from rest_framework import serializers

from charity_projects.models import Project, Milestone
from payments.models import BankAccount
from payments.serializers import BankAccountSummarySerializer
from .models import Proposal, Vote


class ProposalCreateSerializer(serializers.Serializer):
    """
    Serializer for filing a withdrawal proposal.

    Fields:
        - project_id, milestone_id (required)
        - amount (required, minor units)
        - evidence_ref (required)
        - transfer_type: 'bank' or 'crypto'
        - bank_account_id (bank) or crypto_address (crypto)
        - description (optional)
    Ownership and amount rules are enforced by ProposalService.
    """
    project_id = serializers.PrimaryKeyRelatedField(queryset=Project.objects.all(), source='project')
    milestone_id = serializers.PrimaryKeyRelatedField(queryset=Milestone.objects.all(), source='milestone')
    amount = serializers.IntegerField()
    evidence_ref = serializers.CharField(max_length=512)
    transfer_type = serializers.ChoiceField(choices=Proposal.TRANSFER_TYPE_CHOICES)
    bank_account_id = serializers.PrimaryKeyRelatedField(
        queryset=BankAccount.objects.all(), source='bank_account', required=False, allow_null=True,
    )
    crypto_address = serializers.CharField(max_length=64, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)


class ProposalDetailSerializer(serializers.ModelSerializer):
    project_id = serializers.IntegerField(read_only=True)
    milestone_id = serializers.IntegerField(read_only=True)
    bank_account = BankAccountSummarySerializer(read_only=True)

    class Meta:
        model = Proposal
        fields = [
            'id', 'project_id', 'milestone_id', 'description', 'evidence_ref', 'amount',
            'transfer_type', 'bank_account', 'crypto_address', 'status', 'ai_score', 'ai_notes',
            'current_approvals', 'current_rejections', 'required_approvals',
            'decided_at', 'transaction_reference', 'error_message',
            'created_at', 'executed_at', 'updated_at',
        ]
        read_only_fields = fields


class ProposalStatusSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    status = serializers.CharField()
    ai_score = serializers.IntegerField(allow_null=True)
    transfer_status = serializers.CharField(allow_null=True)


class VoteSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vote
        fields = ['id', 'proposal', 'approve', 'comment', 'created_at']
        read_only_fields = ['id', 'proposal', 'created_at']


class DecisionSerializer(serializers.Serializer):
    approved = serializers.BooleanField()
