from django.db import transaction
from django.db.models import F
from django.utils import timezone
import logging

from accounts.permissions import Action, authorize
from payments.providers import get_fund_custodian
from quadfund.exceptions import (
    AlreadyDistributed,
    ArityMismatch,
    DistributionMismatch,
    EmptyPool,
    ExternalServiceError,
    InvalidAmount,
    InvalidInput,
    InvalidState,
    PoolNotActive,
    PoolNotEnded,
    ProjectNotInPool,
    TransferFailed,
)
from .models import (
    Allocation,
    DistributionTransfer,
    Donation,
    EligibleContributor,
    Pool,
    PoolContribution,
    PoolProject,
    PoolState,
    ProjectPoolAggregate,
)
from .quadratic import compute_allocations

logger = logging.getLogger(__name__)


def _require_positive_amount(amount):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount()


class DonationLedger:
    """Records donations and keeps the per-(pool, project) tallies."""

    def record_donation(self, *, donor, project, pool, amount, eligible, tx_reference=''):
        """
        Append a donation and update the aggregates.

        The raw tally always grows. The eligible sum grows only for eligible
        donations, and the contributor count only on a donor's first eligible
        donation to this project in this pool.
        """
        authorize(donor, Action.DONATE, pool)
        _require_positive_amount(amount)

        with transaction.atomic():
            if not PoolProject.objects.filter(pool=pool, project=project).exists():
                raise ProjectNotInPool()

            # Lock the (pool, project) tally first, then re-read the pool so a
            # distribution that already holds the tally is observed.
            ProjectPoolAggregate.objects.get_or_create(pool=pool, project=project)
            aggregate = ProjectPoolAggregate.objects.select_for_update().get(pool=pool, project=project)
            current = Pool.objects.get(pk=pool.pk)
            if current.state() != PoolState.ACTIVE:
                raise PoolNotActive()

            donation = Donation.objects.create(
                donor=donor,
                project=project,
                pool=current,
                amount=amount,
                eligible=eligible,
                tx_reference=tx_reference or '',
            )

            first_eligible = False
            if eligible:
                _, first_eligible = EligibleContributor.objects.get_or_create(
                    pool=current, project=project, donor=donor,
                )

            ProjectPoolAggregate.objects.filter(pk=aggregate.pk).update(
                raw_total=F('raw_total') + amount,
                raw_donation_count=F('raw_donation_count') + 1,
                donation_sum=F('donation_sum') + (amount if eligible else 0),
                unique_contributor_count=F('unique_contributor_count') + (1 if first_eligible else 0),
            )

        logger.info(
            f"Donation {donation.pk}: {amount} to project {project.pk} in pool {pool.pk} "
            f"(eligible={eligible}, new_contributor={first_eligible})"
        )
        return donation


class PoolLifecycle:
    """
    scheduled -> active -> ended -> distributed

    The first three follow from the clock; only AllocationEngine reaches
    ``distributed``.
    """

    def create_pool(self, *, sponsor, name, start_time, end_time, wallet_address, description=''):
        authorize(sponsor, Action.CREATE_POOL)
        if end_time <= start_time:
            raise InvalidInput("end_time must be after start_time.")
        if not wallet_address:
            raise InvalidInput("A custody wallet address is required.")

        pool = Pool.objects.create(
            name=name,
            description=description,
            sponsor=sponsor,
            wallet_address=wallet_address,
            start_time=start_time,
            end_time=end_time,
        )
        logger.info(f"Pool {pool.pk} created by {sponsor.email} ({start_time} - {end_time})")
        return pool

    def register_project(self, *, user, pool, project):
        authorize(user, Action.MANAGE_POOL, pool)
        if not project.is_active:
            raise InvalidInput("Inactive projects cannot join a pool.")

        with transaction.atomic():
            pool = Pool.objects.select_for_update().get(pk=pool.pk)
            if pool.state() not in (PoolState.SCHEDULED, PoolState.ACTIVE):
                raise InvalidState("Projects can only be added before the pool ends.")
            if PoolProject.objects.filter(pool=pool, project=project).exists():
                raise InvalidInput("Project is already registered to this pool.")

            registration = PoolProject.objects.create(pool=pool, project=project)
            ProjectPoolAggregate.objects.get_or_create(pool=pool, project=project)

        logger.info(f"Project {project.pk} registered to pool {pool.pk}")
        return registration

    def contribute(self, *, user, pool, amount, tx_reference=''):
        """Add sponsor funds to the matching pool. Only before the pool ends."""
        authorize(user, Action.FUND_POOL, pool)
        _require_positive_amount(amount)

        with transaction.atomic():
            pool = Pool.objects.select_for_update().get(pk=pool.pk)
            if pool.state() not in (PoolState.SCHEDULED, PoolState.ACTIVE):
                raise PoolNotActive("The pool no longer accepts matching funds.")

            contribution = PoolContribution.objects.create(
                pool=pool,
                contributor=user,
                amount=amount,
                tx_reference=tx_reference or '',
            )
            Pool.objects.filter(pk=pool.pk).update(total_funds=F('total_funds') + amount)

        logger.info(f"Pool {pool.pk} funded with {amount} by {user.email}")
        return contribution

    def end_pool_early(self, *, user, pool):
        authorize(user, Action.MANAGE_POOL, pool)

        with transaction.atomic():
            pool = Pool.objects.select_for_update().get(pk=pool.pk)
            now = timezone.now()
            if pool.state(now) not in (PoolState.SCHEDULED, PoolState.ACTIVE):
                raise InvalidState("Only scheduled or active pools can be ended early.")

            if pool.start_time > now:
                pool.start_time = now
            pool.end_time = now
            pool.save(update_fields=['start_time', 'end_time', 'updated_at'])

        logger.info(f"Pool {pool.pk} ended early by {user.email}")
        return pool

    def summary(self, pool):
        return {
            'id': pool.pk,
            'name': pool.name,
            'total_funds': pool.total_funds,
            'project_count': pool.pool_projects.count(),
            'is_distributed': pool.is_distributed,
            'state': pool.state(),
        }


class AllocationEngine:
    """Computes and pays out the quadratic-funding split of an ended pool."""

    def __init__(self, custodian=None):
        self._custodian = custodian

    @property
    def custodian(self):
        if self._custodian is None:
            self._custodian = get_fund_custodian()
        return self._custodian

    @staticmethod
    def transfer_reference(pool_id, project_id):
        return f"pool-{pool_id}-project-{project_id}"

    def allocations(self, pool):
        return [
            {'pool_id': a.pool_id, 'project_id': a.project_id, 'amount': a.amount}
            for a in Allocation.objects.filter(pool_id=pool.pk).order_by('id')
        ]

    def compute_and_distribute(self, *, user, pool, projects, destinations):
        """
        Distribute ``pool.total_funds`` across ``projects``, paying each
        allocation to the destination at the same index.

        Runs in three steps. The payout plan is computed and committed as
        ``DistributionTransfer`` rows under the pool lock, the transfers are
        made, and the allocations are written under the pool lock again. A
        failed transfer leaves the pool undistributed. The committed plan
        binds every retry, so money already sent is never recorded as a
        different amount or paid to a different destination. Each custodian
        transfer carries a per-(pool, project) reference, so a retry or a
        concurrent caller never pays a destination twice.
        """
        authorize(user, Action.DISTRIBUTE_POOL, pool)

        with transaction.atomic():
            pool = Pool.objects.select_for_update().get(pk=pool.pk)
            if pool.is_distributed:
                raise AlreadyDistributed(allocations=self.allocations(pool))

            if pool.state() != PoolState.ENDED:
                raise PoolNotEnded()
            if pool.total_funds == 0:
                raise EmptyPool()
            if len(projects) != len(destinations):
                raise ArityMismatch()

            project_ids = [getattr(p, 'pk', p) for p in projects]
            registered = set(PoolProject.objects.filter(pool=pool).values_list('project_id', flat=True))
            missing = [pid for pid in project_ids if pid not in registered]
            if missing:
                raise ProjectNotInPool(f"Projects not registered to this pool: {missing}")
            if len(set(project_ids)) != len(project_ids):
                raise InvalidInput("Each project may appear only once.")
            if any(not destination for destination in destinations):
                raise InvalidInput("Every project needs a destination address.")

            sums_by_project = dict(
                ProjectPoolAggregate.objects.select_for_update()
                .filter(pool=pool, project_id__in=project_ids)
                .values_list('project_id', 'donation_sum')
            )
            sums = [sums_by_project.get(pid, 0) for pid in project_ids]
            amounts, remainder = compute_allocations(pool.total_funds, sums)
            plan = list(zip(project_ids, destinations, amounts))
            payouts = self._commit_plan(pool, plan)

        for payout in payouts:
            if payout.status != 'sent':
                self._pay(pool, payout)

        with transaction.atomic():
            pool = Pool.objects.select_for_update().get(pk=pool.pk)
            if pool.is_distributed:
                # Another caller finished the same plan first.
                raise AlreadyDistributed(allocations=self.allocations(pool))

            tx_refs = dict(
                DistributionTransfer.objects.filter(pool=pool, status='sent')
                .values_list('project_id', 'tx_reference')
            )
            rows = [
                Allocation(
                    pool=pool,
                    project_id=project_id,
                    amount=amount,
                    destination=destination,
                    tx_reference=tx_refs.get(project_id, '') if amount else '',
                )
                for project_id, destination, amount in plan
            ]
            Allocation.objects.bulk_create(rows)
            pool.is_distributed = True
            pool.distributed_at = timezone.now()
            pool.save(update_fields=['is_distributed', 'distributed_at', 'updated_at'])

        if remainder:
            logger.info(f"Pool {pool.pk}: rounding remainder of {remainder} left unallocated")
        logger.info(f"Pool {pool.pk} distributed across {len(rows)} projects")
        return {
            'pool_id': pool.pk,
            'allocations': self.allocations(pool),
            'unallocated_remainder': remainder,
        }

    def _commit_plan(self, pool, plan):
        """
        Record the non-zero payouts of ``plan``, or check it against the plan
        an earlier attempt recorded. Must run under the pool lock.
        """
        planned = {
            self.transfer_reference(pool.pk, project_id): (project_id, destination, amount)
            for project_id, destination, amount in plan
            if amount > 0
        }
        existing = list(DistributionTransfer.objects.filter(pool=pool))
        if existing:
            recorded = {t.reference: (t.project_id, t.destination, t.amount) for t in existing}
            if recorded != planned:
                logger.warning(f"Pool {pool.pk}: distribution retried with a plan that differs from the recorded one")
                raise DistributionMismatch()
            return existing

        return [
            DistributionTransfer.objects.create(
                pool=pool,
                project_id=project_id,
                reference=reference,
                amount=amount,
                destination=destination,
            )
            for reference, (project_id, destination, amount) in planned.items()
        ]

    def _pay(self, pool, payout):
        try:
            tx_ref = self.custodian.transfer(
                pool.wallet_address, payout.destination, payout.amount, reference=payout.reference,
            )
        except ExternalServiceError as e:
            DistributionTransfer.objects.filter(pk=payout.pk).update(status='failed', updated_at=timezone.now())
            logger.error(f"Distribution of pool {pool.pk} stopped: transfer {payout.reference} failed")
            raise TransferFailed(
                f"Transfer to project {payout.project_id} failed; the pool stays undistributed."
            ) from e

        DistributionTransfer.objects.filter(pk=payout.pk).update(
            status='sent', tx_reference=tx_ref, updated_at=timezone.now(),
        )
        payout.status = 'sent'
        payout.tx_reference = tx_ref
