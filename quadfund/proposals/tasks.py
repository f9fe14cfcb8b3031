import logging

from celery import shared_task

from quadfund.exceptions import ExternalServiceError
from .models import Proposal, OPEN_STATUSES
from .services import ProposalService

logger = logging.getLogger(__name__)


@shared_task(
    autoretry_for=(ExternalServiceError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={'max_retries': 5},
)
def verify_proposal_task(proposal_id: int) -> None:
    """
    Score a proposal's evidence in the background.

    Retries with exponential backoff while the verification service is
    unavailable. Proposals decided in the meantime are left alone.
    """
    proposal = Proposal.objects.select_related('milestone', 'project').filter(pk=proposal_id).first()
    if proposal is None:
        logger.warning("AI verification skipped: proposal %s does not exist", proposal_id)
        return
    if proposal.status not in OPEN_STATUSES:
        logger.info("AI verification skipped: proposal %s is already %s", proposal_id, proposal.status)
        return

    ProposalService().ai_verify(proposal)
