import json
import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from quadfund.exceptions import InvalidInput, SignatureMismatch, UnknownTransfer
from proposals.models import Proposal, ProposalStatus
from .models import Transfer, WebhookEvent
from .providers import get_fund_custodian, get_bank_provider
from .serializers import BankWebhookSerializer

logger = logging.getLogger(__name__)


class TransferExecutor:
    """
    Moves withdrawal funds on behalf of the proposal lifecycle.

    Crypto transfers go through the fund custodian and settle synchronously.
    Bank transfers are only dispatched here; their outcome arrives through
    ``handle_bank_webhook``.
    """

    def __init__(self, custodian=None, bank_provider=None):
        self._custodian = custodian
        self._bank_provider = bank_provider

    @property
    def custodian(self):
        if self._custodian is None:
            self._custodian = get_fund_custodian()
        return self._custodian

    @property
    def bank_provider(self):
        if self._bank_provider is None:
            self._bank_provider = get_bank_provider()
        return self._bank_provider

    def send_crypto(self, proposal: Proposal) -> str:
        """Pay the proposal out of the project wallet; returns the custodian tx reference."""
        project = proposal.project
        tx_ref = self.custodian.transfer(
            project.wallet_address,
            proposal.crypto_address,
            proposal.amount,
            reference=f"proposal-{proposal.pk}",
        )
        Transfer.objects.create(
            proposal=proposal,
            transfer_type='crypto',
            provider=settings.FUND_CUSTODIAN,
            provider_reference=tx_ref,
            status='completed',
            amount=proposal.amount,
            currency=settings.DEFAULT_CURRENCY,
            completed_at=timezone.now(),
        )
        logger.info(f"Crypto transfer for proposal {proposal.pk} settled. TX: {tx_ref}")
        return tx_ref

    def dispatch_bank(self, proposal: Proposal) -> Transfer:
        """
        Ask the bank provider for a payout and record it as a pending transfer.

        The provider only hands out its transfer id once the payout exists, so
        the row is written after the call. A webhook landing in between is
        answered with ``UnknownTransfer`` (409) and no state change; the
        provider redelivers non-2xx webhooks, and the redelivery finds the row.
        """
        bank_account = proposal.bank_account
        provider = self.bank_provider
        provider_reference = provider.initiate_transfer(
            bank_account,
            proposal.amount,
            settings.DEFAULT_CURRENCY,
            reference=f"proposal-{proposal.pk}",
        )
        transfer = Transfer.objects.create(
            proposal=proposal,
            transfer_type='bank',
            provider=provider.name,
            provider_reference=provider_reference,
            status='pending',
            amount=proposal.amount,
            currency=settings.DEFAULT_CURRENCY,
        )
        logger.info(f"Bank transfer for proposal {proposal.pk} dispatched. Reference: {provider_reference}")
        return transfer

    def handle_bank_webhook(self, raw_body: bytes, signature: str) -> dict:
        """
        Apply a signed transfer state change from the bank provider.

        Duplicate deliveries are safe: once a transfer is completed or failed,
        later events for it change nothing.
        """
        provider = self.bank_provider
        if not provider.validate_webhook(raw_body, signature):
            logger.warning(f"Rejected {provider.name} webhook with an invalid signature")
            raise SignatureMismatch()

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise InvalidInput("Webhook body is not valid JSON.") from e

        serializer = BankWebhookSerializer(data=payload)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        reference = data['provider_reference']
        new_status = data['new_status']

        if new_status not in Transfer.TERMINAL_STATUSES:
            logger.info(f"Transfer {reference} reported {new_status}; nothing to update")
            return {'status': 'acknowledged', 'provider_reference': reference, 'transfer_status': new_status}

        with transaction.atomic():
            transfer = (
                Transfer.objects.select_for_update()
                .select_related('proposal')
                .filter(provider_reference=reference)
                .first()
            )
            if transfer is None:
                logger.warning(f"Webhook for unknown transfer reference {reference}; left for redelivery")
                raise UnknownTransfer()

            if transfer.is_terminal:
                if transfer.status == new_status:
                    return {'status': 'already_processed', 'provider_reference': reference, 'transfer_status': transfer.status}
                logger.warning(
                    f"Ignoring {new_status} for transfer {reference}: already {transfer.status}"
                )
                return {'status': 'ignored', 'provider_reference': reference, 'transfer_status': transfer.status}

            event_id = data.get('event_id') or f"{reference}:{new_status}"
            _, created = WebhookEvent.objects.get_or_create(provider=provider.name, event_id=event_id)
            if not created:
                return {'status': 'already_processed', 'provider_reference': reference, 'transfer_status': transfer.status}

            now = timezone.now()
            proposal = transfer.proposal
            if new_status == 'completed':
                transfer.status = 'completed'
                transfer.completed_at = now
                transfer.save(update_fields=['status', 'completed_at', 'updated_at'])
                updated = Proposal.objects.filter(pk=proposal.pk, status=ProposalStatus.EXECUTING).update(
                    status=ProposalStatus.EXECUTED,
                    executed_at=now,
                    transaction_reference=reference,
                    error_message='',
                    updated_at=now,
                )
            else:
                reason = data.get('reason') or 'Bank transfer failed'
                transfer.status = 'failed'
                transfer.failure_reason = reason
                transfer.save(update_fields=['status', 'failure_reason', 'updated_at'])
                updated = Proposal.objects.filter(pk=proposal.pk, status=ProposalStatus.EXECUTING).update(
                    status=ProposalStatus.FAILED,
                    error_message=reason,
                    updated_at=now,
                )

            if not updated:
                logger.warning(
                    f"Transfer {reference} is {new_status} but proposal {proposal.pk} was not executing"
                )

        logger.info(f"Transfer {reference} marked {new_status} (proposal {proposal.pk})")
        return {'status': 'processed', 'provider_reference': reference, 'transfer_status': new_status}
