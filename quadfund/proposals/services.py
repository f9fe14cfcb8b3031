"""
Milestone withdrawal proposals.

    pending -> scored -> approved | rejected -> executing -> executed | failed

Every transition is a conditional UPDATE on the current status, so two
requests racing on the same proposal cannot both move it.
"""
import logging
import re

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from accounts.permissions import Action, authorize
from charity_projects.models import Milestone
from payments.services import TransferExecutor
from pools.models import Donation
from quadfund.exceptions import (
    AlreadyVoted,
    ExternalServiceError,
    InsufficientFunds,
    InvalidAmount,
    InvalidInput,
    InvalidState,
    NotApproved,
    NotAuthorized,
    TransferFailed,
)
from .models import OPEN_STATUSES, Proposal, ProposalStatus, Vote
from .verification import get_verification_service

logger = logging.getLogger(__name__)

CRYPTO_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')

ACTIVE_STATUSES = (
    ProposalStatus.PENDING,
    ProposalStatus.SCORED,
    ProposalStatus.APPROVED,
    ProposalStatus.EXECUTING,
)


class MilestoneStatus:
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


def _proposal_total(milestone, statuses, exclude_pk=None):
    queryset = Proposal.objects.filter(milestone=milestone, status__in=statuses)
    if exclude_pk is not None:
        queryset = queryset.exclude(pk=exclude_pk)
    return queryset.aggregate(total=Sum('amount'))['total'] or 0


def milestone_remaining(milestone):
    executed = _proposal_total(milestone, [ProposalStatus.EXECUTED])
    return max(0, milestone.allocated_amount - executed)


def milestone_status(milestone):
    allocated = milestone.allocated_amount
    if allocated > 0 and _proposal_total(milestone, [ProposalStatus.EXECUTED]) >= allocated:
        return MilestoneStatus.COMPLETED
    if Proposal.objects.filter(milestone=milestone, status__in=ACTIVE_STATUSES).exists():
        return MilestoneStatus.IN_PROGRESS
    return MilestoneStatus.PENDING


def proposal_status(proposal):
    transfer = proposal.transfers.order_by('-created_at').first()
    return {
        'id': proposal.pk,
        'status': proposal.status,
        'ai_score': proposal.ai_score,
        'transfer_status': transfer.status if transfer else None,
    }


class ProposalService:

    def __init__(self, verifier=None, executor=None):
        self._verifier = verifier
        self.executor = executor or TransferExecutor()

    @property
    def verifier(self):
        if self._verifier is None:
            self._verifier = get_verification_service()
        return self._verifier

    def create(self, *, user, project, milestone, amount, evidence_ref, transfer_type,
               bank_account=None, crypto_address='', description=''):
        """
        File a withdrawal request against one milestone of ``project``.

        ``amount`` may not exceed what is left of the milestone's share of the
        funding goal after executed withdrawals.
        """
        authorize(user, Action.CREATE_PROPOSAL, project)

        if not project.is_active:
            raise InvalidState("Project is not active.")
        if milestone.project_id != project.pk:
            raise InvalidInput("Milestone does not belong to this project.")
        split = project.milestone_percentage_total()
        if split != 100:
            raise InvalidInput(f"Project milestones must add up to 100% (currently {split}%).")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount()
        if not evidence_ref:
            raise InvalidInput("Evidence reference is required.")

        if transfer_type == 'bank':
            if bank_account is None:
                raise InvalidInput("A bank account is required for bank transfers.")
            if bank_account.owner_id != project.charity_admin_id:
                raise InvalidInput("Bank account does not belong to the project's charity.")
            if bank_account.purpose != 'withdrawal' or not bank_account.is_verified:
                raise InvalidInput("Bank account must be a verified withdrawal account.")
            crypto_address = ''
        elif transfer_type == 'crypto':
            if not crypto_address or not CRYPTO_ADDRESS_RE.match(crypto_address):
                raise InvalidInput("Invalid crypto address.")
            bank_account = None
        else:
            raise InvalidInput("transfer_type must be 'bank' or 'crypto'.")

        with transaction.atomic():
            # Serialize proposals against the same milestone.
            Milestone.objects.select_for_update().get(pk=milestone.pk)
            remaining = milestone_remaining(milestone)
            if amount > remaining:
                raise InvalidAmount(f"Amount exceeds the milestone's remaining allocation of {remaining}.")

            proposal = Proposal.objects.create(
                project=project,
                milestone=milestone,
                created_by=user,
                description=description,
                evidence_ref=evidence_ref,
                amount=amount,
                transfer_type=transfer_type,
                bank_account=bank_account,
                crypto_address=crypto_address,
            )

            if settings.PROPOSAL_AUTO_AI_VERIFY:
                from .tasks import verify_proposal_task
                transaction.on_commit(lambda: verify_proposal_task.delay(proposal.pk))

        logger.info(f"Proposal {proposal.pk} created for milestone {milestone.pk}: {amount} via {transfer_type}")
        return proposal

    def ai_verify(self, proposal, user=None):
        """
        Score the proposal's evidence. Allowed until an operator decides, so a
        failed or outdated score can be retried.
        """
        if user is not None:
            authorize(user, Action.VERIFY_PROPOSAL, proposal.project)

        proposal.refresh_from_db(fields=['status'])
        if proposal.status not in OPEN_STATUSES:
            raise InvalidState(f"Proposal is {proposal.status} and can no longer be scored.")

        milestone = proposal.milestone
        # The external call happens outside any transaction or row lock.
        result = self.verifier.evaluate(
            proposal.evidence_ref,
            milestone.description or milestone.title,
            amount=proposal.amount,
            allocated_amount=milestone.allocated_amount,
            description=proposal.description,
        )
        score = result.get('score')
        if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
            raise ExternalServiceError("AI verification returned an invalid score.")

        updated = Proposal.objects.filter(pk=proposal.pk, status__in=OPEN_STATUSES).update(
            status=ProposalStatus.SCORED,
            ai_score=score,
            ai_notes=result.get('notes', ''),
            updated_at=timezone.now(),
        )
        if not updated:
            raise InvalidState("Proposal was decided while it was being scored.")

        proposal.refresh_from_db()
        logger.info(f"Proposal {proposal.pk} scored {score}")
        return proposal

    def vote(self, *, proposal, user, approve, comment=''):
        """Record one advisory vote per donor. Never changes the proposal status."""
        authorize(user, Action.VOTE_PROPOSAL, proposal)
        if not Donation.objects.filter(donor=user, project_id=proposal.project_id).exists():
            raise NotAuthorized("Only donors to this project can vote on its proposals.")

        with transaction.atomic():
            locked = Proposal.objects.select_for_update().get(pk=proposal.pk)
            if locked.status not in OPEN_STATUSES:
                raise InvalidState(f"Voting is closed; proposal is {locked.status}.")
            if Vote.objects.filter(user=user, proposal=locked).exists():
                raise AlreadyVoted()
            try:
                with transaction.atomic():
                    vote = Vote.objects.create(user=user, proposal=locked, approve=approve, comment=comment)
            except IntegrityError as e:
                raise AlreadyVoted() from e

            counter = 'current_approvals' if approve else 'current_rejections'
            Proposal.objects.filter(pk=locked.pk).update(**{counter: F(counter) + 1})

        proposal.refresh_from_db()
        logger.info(f"Vote on proposal {proposal.pk} by {user.email}: {'approve' if approve else 'reject'}")
        return vote

    def decide(self, *, proposal, user, approved):
        authorize(user, Action.DECIDE_PROPOSAL, proposal)

        new_status = ProposalStatus.APPROVED if approved else ProposalStatus.REJECTED
        now = timezone.now()
        updated = Proposal.objects.filter(pk=proposal.pk, status__in=OPEN_STATUSES).update(
            status=new_status,
            decided_by=user,
            decided_at=now,
            updated_at=now,
        )
        proposal.refresh_from_db()
        if not updated:
            raise InvalidState(f"Proposal is {proposal.status} and can no longer be decided.")

        logger.info(f"Proposal {proposal.pk} {new_status} by {user.email}")
        return proposal

    def execute(self, *, proposal, user):
        """
        Release the approved amount from the project wallet.

        Crypto settles immediately: success ends in ``executed``, failure puts
        the proposal back to ``approved`` so it can be retried. Bank transfers
        are only dispatched and stay ``executing`` until the provider webhook.
        Any error after the claim puts the proposal back to ``approved``;
        retries reuse the ``proposal-<id>`` reference, so providers do not pay
        twice.
        """
        authorize(user, Action.EXECUTE_PROPOSAL, proposal.project)

        proposal.refresh_from_db()
        if proposal.status != ProposalStatus.APPROVED:
            raise NotApproved()

        balance = self.executor.custodian.get_balance(proposal.project.wallet_address)
        if balance < proposal.amount:
            logger.info(f"Proposal {proposal.pk} needs {proposal.amount}, wallet holds {balance}")
            raise InsufficientFunds()

        self._claim(proposal)

        try:
            if proposal.transfer_type == 'crypto':
                self._settle_crypto(proposal)
            else:
                self._dispatch_bank(proposal)
        except ExternalServiceError as e:
            self._revert_to_approved(proposal, str(e.detail))
            if proposal.transfer_type == 'crypto':
                raise TransferFailed("Crypto transfer failed; the proposal can be executed again.") from e
            raise TransferFailed("Bank transfer could not be dispatched; the proposal can be executed again.") from e
        except Exception as e:
            logger.exception(f"Unexpected error while executing proposal {proposal.pk}")
            self._revert_to_approved(proposal, f"Execution error: {e}")
            raise

        proposal.refresh_from_db()
        return proposal

    def _claim(self, proposal):
        """
        ``approved -> executing`` under the milestone lock, so proposals of the
        same milestone are checked against its allocation one at a time.
        """
        with transaction.atomic():
            milestone = Milestone.objects.select_for_update().select_related('project').get(pk=proposal.milestone_id)
            committed = _proposal_total(
                milestone, [ProposalStatus.EXECUTING, ProposalStatus.EXECUTED], exclude_pk=proposal.pk,
            )
            if proposal.amount > milestone.allocated_amount - committed:
                raise InvalidState("Milestone allocation is already withdrawn by other proposals.")

            claimed = Proposal.objects.filter(pk=proposal.pk, status=ProposalStatus.APPROVED).update(
                status=ProposalStatus.EXECUTING,
                updated_at=timezone.now(),
            )
            if not claimed:
                raise NotApproved("Proposal is already being executed.")

    def _settle_crypto(self, proposal):
        tx_ref = self.executor.send_crypto(proposal)
        now = timezone.now()
        Proposal.objects.filter(pk=proposal.pk, status=ProposalStatus.EXECUTING).update(
            status=ProposalStatus.EXECUTED,
            executed_at=now,
            transaction_reference=tx_ref,
            error_message='',
            updated_at=now,
        )
        logger.info(f"Proposal {proposal.pk} executed. TX: {tx_ref}")

    def _dispatch_bank(self, proposal):
        transfer = self.executor.dispatch_bank(proposal)
        Proposal.objects.filter(pk=proposal.pk).update(
            transaction_reference=transfer.provider_reference,
            updated_at=timezone.now(),
        )
        logger.info(f"Proposal {proposal.pk} awaiting bank confirmation for {transfer.provider_reference}")

    def _revert_to_approved(self, proposal, reason):
        logger.warning(f"Transfer for proposal {proposal.pk} failed: {reason}")
        Proposal.objects.filter(pk=proposal.pk, status=ProposalStatus.EXECUTING).update(
            status=ProposalStatus.APPROVED,
            error_message=reason,
            updated_at=timezone.now(),
        )
