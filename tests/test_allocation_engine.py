import pytest

from pools.models import Allocation, DistributionTransfer, Pool, ProjectPoolAggregate
from pools.services import AllocationEngine, DonationLedger, PoolLifecycle
from quadfund.exceptions import (
    AlreadyDistributed,
    ArityMismatch,
    DistributionMismatch,
    EmptyPool,
    NotAuthorized,
    PoolNotEnded,
    ProjectNotInPool,
    TransferFailed,
)

pytestmark = pytest.mark.django_db


def _set_sum(pool, project, donation_sum):
    ProjectPoolAggregate.objects.filter(pool=pool, project=project).update(donation_sum=donation_sum)


@pytest.fixture
def two_projects(make_project):
    return make_project(), make_project()


@pytest.fixture
def ended_pool(make_pool, two_projects):
    project_a, project_b = two_projects
    pool = make_pool(state='ended', total_funds=1000, projects=[project_a, project_b])
    _set_sum(pool, project_a, 100)
    _set_sum(pool, project_b, 400)
    return pool


class TestComputeAndDistribute:

    def test_reference_distribution(self, ended_pool, two_projects, sponsor, custodian):
        project_a, project_b = two_projects
        result = AllocationEngine().compute_and_distribute(
            user=sponsor, pool=ended_pool, projects=[project_a, project_b], destinations=["0xA", "0xB"],
        )

        amounts = {a['project_id']: a['amount'] for a in result['allocations']}
        assert amounts == {project_a.pk: 333, project_b.pk: 666}
        assert result['unallocated_remainder'] == 1
        assert custodian.transfers == [
            ("pool-wallet", "0xA", 333, f"pool-{ended_pool.pk}-project-{project_a.pk}"),
            ("pool-wallet", "0xB", 666, f"pool-{ended_pool.pk}-project-{project_b.pk}"),
        ]

        ended_pool.refresh_from_db()
        assert ended_pool.is_distributed is True
        assert ended_pool.distributed_at is not None

    def test_full_flow_from_donations(self, make_pool, two_projects, sponsor, make_donor, custodian):
        project_a, project_b = two_projects
        pool = make_pool(state='active', projects=[project_a, project_b])
        lifecycle, ledger = PoolLifecycle(), DonationLedger()

        lifecycle.contribute(user=sponsor, pool=pool, amount=1000)
        ledger.record_donation(donor=make_donor(), project=project_a, pool=pool, amount=100, eligible=True)
        ledger.record_donation(donor=make_donor(), project=project_b, pool=pool, amount=400, eligible=True)
        # raw-only donations do not move the split
        ledger.record_donation(donor=make_donor(verified=False), project=project_a, pool=pool, amount=9000, eligible=False)
        lifecycle.end_pool_early(user=sponsor, pool=pool)

        result = AllocationEngine().compute_and_distribute(
            user=sponsor, pool=pool, projects=[project_a.pk, project_b.pk], destinations=["0xA", "0xB"],
        )
        assert [a['amount'] for a in result['allocations']] == [333, 666]

    def test_second_distribution_returns_existing_allocations(self, ended_pool, two_projects, operator, custodian):
        project_a, project_b = two_projects
        engine = AllocationEngine()
        engine.compute_and_distribute(
            user=operator, pool=ended_pool, projects=[project_a, project_b], destinations=["0xA", "0xB"],
        )
        before = list(Allocation.objects.values_list('project_id', 'amount'))

        with pytest.raises(AlreadyDistributed) as excinfo:
            engine.compute_and_distribute(
                user=operator, pool=ended_pool, projects=[project_a, project_b], destinations=["0xC", "0xD"],
            )

        assert {a['amount'] for a in excinfo.value.allocations} == {333, 666}
        assert list(Allocation.objects.values_list('project_id', 'amount')) == before
        assert len(custodian.transfers) == 2

    def test_empty_pool_stays_undistributed(self, make_pool, project, sponsor, custodian):
        pool = make_pool(state='ended', total_funds=0, projects=[project])
        with pytest.raises(EmptyPool):
            AllocationEngine().compute_and_distribute(
                user=sponsor, pool=pool, projects=[project], destinations=["0xA"],
            )
        pool.refresh_from_db()
        assert pool.is_distributed is False

    def test_no_eligible_donations_is_a_zero_distribution(self, make_pool, two_projects, sponsor, custodian):
        pool = make_pool(state='ended', total_funds=500, projects=list(two_projects))
        result = AllocationEngine().compute_and_distribute(
            user=sponsor, pool=pool, projects=list(two_projects), destinations=["0xA", "0xB"],
        )
        assert [a['amount'] for a in result['allocations']] == [0, 0]
        assert result['unallocated_remainder'] == 500
        assert custodian.transfers == []
        pool.refresh_from_db()
        assert pool.is_distributed is True

    def test_zero_allocation_skips_transfer(self, make_pool, two_projects, sponsor, custodian):
        project_a, project_b = two_projects
        pool = make_pool(state='ended', total_funds=100, projects=[project_a, project_b])
        _set_sum(pool, project_a, 25)
        result = AllocationEngine().compute_and_distribute(
            user=sponsor, pool=pool, projects=[project_a, project_b], destinations=["0xA", "0xB"],
        )
        assert [a['amount'] for a in result['allocations']] == [100, 0]
        assert [t[1] for t in custodian.transfers] == ["0xA"]

    def test_pool_must_have_ended(self, make_pool, project, sponsor, custodian):
        pool = make_pool(state='active', total_funds=100, projects=[project])
        with pytest.raises(PoolNotEnded):
            AllocationEngine().compute_and_distribute(
                user=sponsor, pool=pool, projects=[project], destinations=["0xA"],
            )

    def test_arity_mismatch(self, ended_pool, two_projects, sponsor, custodian):
        with pytest.raises(ArityMismatch):
            AllocationEngine().compute_and_distribute(
                user=sponsor, pool=ended_pool, projects=list(two_projects), destinations=["0xA"],
            )

    def test_unregistered_project(self, ended_pool, make_project, sponsor, custodian):
        outsider = make_project()
        with pytest.raises(ProjectNotInPool):
            AllocationEngine().compute_and_distribute(
                user=sponsor, pool=ended_pool, projects=[outsider], destinations=["0xA"],
            )

    def test_authorization_checked_first(self, ended_pool, two_projects, donor, custodian):
        Pool.objects.filter(pk=ended_pool.pk).update(is_distributed=True)
        with pytest.raises(NotAuthorized):
            AllocationEngine().compute_and_distribute(
                user=donor, pool=ended_pool, projects=list(two_projects), destinations=["0xA", "0xB"],
            )

    def test_transfer_failure_rolls_back(self, ended_pool, two_projects, sponsor, custodian):
        project_a, project_b = two_projects
        custodian.failing_destinations.add("0xB")
        engine = AllocationEngine()

        with pytest.raises(TransferFailed):
            engine.compute_and_distribute(
                user=sponsor, pool=ended_pool, projects=[project_a, project_b], destinations=["0xA", "0xB"],
            )

        ended_pool.refresh_from_db()
        assert ended_pool.is_distributed is False
        assert not Allocation.objects.filter(pool=ended_pool).exists()

        # Retry succeeds and does not pay project A twice at the custodian.
        custodian.failing_destinations.clear()
        engine.compute_and_distribute(
            user=sponsor, pool=ended_pool, projects=[project_a, project_b], destinations=["0xA", "0xB"],
        )
        assert [t[1] for t in custodian.transfers] == ["0xA", "0xB"]
        ended_pool.refresh_from_db()
        assert ended_pool.is_distributed is True

    def _fail_on_b(self, ended_pool, two_projects, sponsor, custodian):
        project_a, project_b = two_projects
        custodian.failing_destinations.add("0xB")
        with pytest.raises(TransferFailed):
            AllocationEngine().compute_and_distribute(
                user=sponsor, pool=ended_pool, projects=[project_a, project_b], destinations=["0xA", "0xB"],
            )
        custodian.failing_destinations.clear()

    def test_failed_attempt_keeps_its_payout_record(self, ended_pool, two_projects, sponsor, custodian):
        project_a, project_b = two_projects
        self._fail_on_b(ended_pool, two_projects, sponsor, custodian)

        statuses = dict(DistributionTransfer.objects.filter(pool=ended_pool).values_list('project_id', 'status'))
        assert statuses == {project_a.pk: 'sent', project_b.pk: 'failed'}
        assert DistributionTransfer.objects.get(project=project_a).tx_reference == "0xtx1"

    def test_retry_with_fewer_projects_is_refused(self, ended_pool, two_projects, sponsor, custodian):
        project_a, _ = two_projects
        self._fail_on_b(ended_pool, two_projects, sponsor, custodian)

        with pytest.raises(DistributionMismatch):
            AllocationEngine().compute_and_distribute(
                user=sponsor, pool=ended_pool, projects=[project_a], destinations=["0xA"],
            )

        assert [t[2] for t in custodian.transfers] == [333]
        assert not Allocation.objects.filter(pool=ended_pool).exists()
        ended_pool.refresh_from_db()
        assert ended_pool.is_distributed is False

    def test_retry_with_other_destination_is_refused(self, ended_pool, two_projects, sponsor, custodian):
        project_a, project_b = two_projects
        self._fail_on_b(ended_pool, two_projects, sponsor, custodian)

        with pytest.raises(DistributionMismatch):
            AllocationEngine().compute_and_distribute(
                user=sponsor, pool=ended_pool, projects=[project_a, project_b], destinations=["0xA2", "0xB"],
            )
        assert [t[1] for t in custodian.transfers] == ["0xA"]

    def test_concurrent_distribution_has_one_winner(self, ended_pool, two_projects, sponsor, custodian):
        project_a, project_b = two_projects
        engine = AllocationEngine()

        def finish_first():
            engine.compute_and_distribute(
                user=sponsor, pool=Pool.objects.get(pk=ended_pool.pk),
                projects=[project_a, project_b], destinations=["0xA", "0xB"],
            )

        custodian.before_transfer = finish_first
        with pytest.raises(AlreadyDistributed) as excinfo:
            engine.compute_and_distribute(
                user=sponsor, pool=ended_pool, projects=[project_a, project_b], destinations=["0xA", "0xB"],
            )

        assert len(excinfo.value.allocations) == 2
        assert len(custodian.transfers) == 2
        assert Allocation.objects.filter(pool=ended_pool).count() == 2
        assert sum(a.amount for a in Allocation.objects.filter(pool=ended_pool)) == 999
