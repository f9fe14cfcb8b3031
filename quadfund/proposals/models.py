from django.db import models
from auditlog.registry import auditlog

from charity_projects.models import Project, Milestone
from accounts.models import CustomUser


class ProposalStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    SCORED = 'scored', 'Scored'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'
    EXECUTING = 'executing', 'Executing'
    EXECUTED = 'executed', 'Executed'
    FAILED = 'failed', 'Failed'


OPEN_STATUSES = (ProposalStatus.PENDING, ProposalStatus.SCORED)
TERMINAL_STATUSES = (ProposalStatus.REJECTED, ProposalStatus.EXECUTED, ProposalStatus.FAILED)


class Proposal(models.Model):
    """
    A charity admin's request to withdraw funds against one milestone.

    pending -> scored -> approved | rejected -> executing -> executed | failed
    """
    TRANSFER_TYPE_CHOICES = (
        ('bank', 'Bank transfer'),
        ('crypto', 'Crypto transfer'),
    )

    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='proposals')
    milestone = models.ForeignKey(Milestone, on_delete=models.PROTECT, related_name='proposals')
    created_by = models.ForeignKey(CustomUser, on_delete=models.PROTECT, related_name='proposals')
    description = models.TextField(blank=True)
    evidence_ref = models.CharField(max_length=512, help_text="Reference to the evidence bundle, e.g. an IPFS hash")
    amount = models.PositiveBigIntegerField()

    transfer_type = models.CharField(max_length=10, choices=TRANSFER_TYPE_CHOICES)
    bank_account = models.ForeignKey(
        'payments.BankAccount',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='proposals'
    )
    crypto_address = models.CharField(max_length=64, blank=True)

    status = models.CharField(max_length=20, choices=ProposalStatus.choices, default=ProposalStatus.PENDING)
    ai_score = models.PositiveSmallIntegerField(null=True, blank=True)
    ai_notes = models.TextField(blank=True)

    # Donor voting is advisory: required_approvals stays 0 and never gates execution.
    current_approvals = models.PositiveIntegerField(default=0)
    current_rejections = models.PositiveIntegerField(default=0)
    required_approvals = models.PositiveIntegerField(default=0)

    decided_by = models.ForeignKey(CustomUser, on_delete=models.SET_NULL, null=True, blank=True, related_name='decided_proposals')
    decided_at = models.DateTimeField(null=True, blank=True)

    transaction_reference = models.CharField(max_length=255, blank=True)
    error_message = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    executed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Proposal #{self.pk} for {self.milestone.title} ({self.amount}, {self.status})"

    @property
    def destination(self):
        if self.transfer_type == 'crypto':
            return self.crypto_address
        return self.bank_account_id


class Vote(models.Model):
    user = models.ForeignKey(CustomUser, on_delete=models.CASCADE, related_name='proposal_votes')
    proposal = models.ForeignKey(Proposal, on_delete=models.CASCADE, related_name='votes')
    approve = models.BooleanField()
    comment = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user', 'proposal'], name='unique_proposal_vote'),
        ]

    def __str__(self):
        return f"{'Approve' if self.approve else 'Reject'} on #{self.proposal_id} by {self.user}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Votes are immutable once cast.")
        super().save(*args, **kwargs)


auditlog.register(Proposal)
