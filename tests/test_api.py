from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone

from pools.models import Donation, Pool
from proposals.models import ProposalStatus
from .conftest import CRYPTO_ADDRESS

pytestmark = pytest.mark.django_db


class TestPoolEndpoints:

    def test_create_pool(self, client_for, sponsor):
        now = timezone.now()
        response = client_for(sponsor).post(reverse('pool-create'), {
            'name': "Winter Round",
            'wallet_address': "pool-wallet",
            'start_time': now.isoformat(),
            'end_time': (now + timedelta(days=7)).isoformat(),
        }, format='json')

        assert response.status_code == 201
        assert Pool.objects.get(pk=response.data['id']).sponsor == sponsor

    def test_charity_admin_cannot_create_pool(self, client_for, charity_admin):
        now = timezone.now()
        response = client_for(charity_admin).post(reverse('pool-create'), {
            'name': "Winter Round",
            'wallet_address': "pool-wallet",
            'start_time': now.isoformat(),
            'end_time': (now + timedelta(days=7)).isoformat(),
        }, format='json')

        assert response.status_code == 403
        assert response.data['kind'] == 'AuthorizationError'
        assert response.data['code'] == 'not_authorized'

    def test_unauthenticated(self, api_client, make_pool):
        response = api_client.get(reverse('pool-summary', args=[make_pool().pk]))
        assert response.status_code == 401
        assert response.data['kind'] == 'AuthorizationError'

    def test_summary(self, client_for, donor, make_pool, project):
        pool = make_pool(total_funds=700, projects=[project])
        response = client_for(donor).get(reverse('pool-summary', args=[pool.pk]))

        assert response.status_code == 200
        assert response.data == {
            'id': pool.pk,
            'name': "Water Round",
            'total_funds': 700,
            'project_count': 1,
            'is_distributed': False,
            'state': 'active',
        }

    def test_register_project(self, client_for, sponsor, make_pool, project):
        pool = make_pool()
        response = client_for(sponsor).post(
            reverse('pool-register-project', args=[pool.pk]), {'project_id': project.pk}, format='json',
        )
        assert response.status_code == 201
        assert pool.pool_projects.filter(project=project).exists()

    def test_contribute_and_end(self, client_for, sponsor, make_pool):
        pool = make_pool()
        client = client_for(sponsor)

        response = client.post(reverse('pool-contribute', args=[pool.pk]), {'amount': 2500}, format='json')
        assert response.status_code == 201

        response = client.post(reverse('pool-end', args=[pool.pk]))
        assert response.status_code == 200
        assert response.data['state'] == 'ended'
        assert response.data['total_funds'] == 2500

    @pytest.mark.parametrize('verified', [True, False])
    def test_donation_eligibility_follows_identity(self, client_for, make_donor, make_pool, project, verified):
        pool = make_pool(projects=[project])
        user = make_donor(verified=verified)
        response = client_for(user).post(
            reverse('pool-donate', args=[pool.pk]), {'project_id': project.pk, 'amount': 100}, format='json',
        )

        assert response.status_code == 201
        assert response.data['eligible'] is verified
        assert Donation.objects.get(pk=response.data['id']).eligible is verified

    def test_donation_to_ended_pool(self, client_for, donor, make_pool, project):
        pool = make_pool(state='ended', projects=[project])
        response = client_for(donor).post(
            reverse('pool-donate', args=[pool.pk]), {'project_id': project.pk, 'amount': 100}, format='json',
        )
        assert response.status_code == 409
        assert response.data == {
            'kind': 'StateError',
            'code': 'pool_not_active',
            'detail': 'The pool is not accepting donations.',
        }

    def test_invalid_amount_code(self, client_for, donor, make_pool, project):
        pool = make_pool(projects=[project])
        response = client_for(donor).post(
            reverse('pool-donate', args=[pool.pk]), {'project_id': project.pk, 'amount': 0}, format='json',
        )
        assert response.status_code == 400
        assert response.data['kind'] == 'ValidationError'
        assert response.data['code'] == 'invalid_amount'

    def test_distribute_and_list_allocations(self, client_for, sponsor, make_pool, make_project, custodian):
        project_a, project_b = make_project(), make_project()
        pool = make_pool(state='ended', total_funds=1000, projects=[project_a, project_b])
        pool.aggregates.filter(project=project_a).update(donation_sum=100)
        pool.aggregates.filter(project=project_b).update(donation_sum=400)
        client = client_for(sponsor)

        response = client.post(reverse('pool-distribute', args=[pool.pk]), {
            'project_ids': [project_a.pk, project_b.pk],
            'destinations': ["0xA", "0xB"],
        }, format='json')

        assert response.status_code == 200
        assert response.data['unallocated_remainder'] == 1
        assert [a['amount'] for a in response.data['allocations']] == [333, 666]

        response = client.post(reverse('pool-distribute', args=[pool.pk]), {
            'project_ids': [project_a.pk, project_b.pk],
            'destinations': ["0xA", "0xB"],
        }, format='json')
        assert response.status_code == 409
        assert response.data['code'] == 'already_distributed'
        assert [a['amount'] for a in response.data['allocations']] == [333, 666]

        response = client.get(reverse('pool-allocations', args=[pool.pk]))
        assert response.status_code == 200
        assert [a['project_id'] for a in response.data] == [project_a.pk, project_b.pk]

    def test_distribute_arity_mismatch(self, client_for, sponsor, make_pool, project, custodian):
        pool = make_pool(state='ended', total_funds=1000, projects=[project])
        response = client_for(sponsor).post(reverse('pool-distribute', args=[pool.pk]), {
            'project_ids': [project.pk],
            'destinations': ["0xA", "0xB"],
        }, format='json')
        assert response.status_code == 400
        assert response.data['code'] == 'arity_mismatch'


class TestProposalEndpoints:

    @pytest.fixture
    def created(self, client_for, charity_admin, project, milestone):
        response = client_for(charity_admin).post(reverse('create-proposal'), {
            'project_id': project.pk,
            'milestone_id': milestone.pk,
            'amount': 1500,
            'evidence_ref': "ipfs://QmWellsPhase1Evidence",
            'transfer_type': 'crypto',
            'crypto_address': CRYPTO_ADDRESS,
            'description': "Drilled and capped the first four wells; photos and invoices are in the bundle.",
        }, format='json')
        assert response.status_code == 201
        return response.data['proposal']

    def test_create_returns_pending_proposal(self, created):
        assert created['status'] == ProposalStatus.PENDING
        assert created['ai_score'] is None

    def test_full_crypto_lifecycle(self, created, client_for, charity_admin, operator, project, custodian):
        custodian.balances[project.wallet_address] = 1500
        admin_client = client_for(charity_admin)
        proposal_id = created['id']

        response = admin_client.post(reverse('verify-proposal', args=[proposal_id]))
        assert response.status_code == 200
        assert response.data['status'] == ProposalStatus.SCORED

        response = client_for(operator).post(
            reverse('decide-proposal', args=[proposal_id]), {'approved': True}, format='json',
        )
        assert response.status_code == 200
        assert response.data['status'] == ProposalStatus.APPROVED

        response = admin_client.post(reverse('execute-proposal', args=[proposal_id]))
        assert response.status_code == 200
        assert response.data['status'] == ProposalStatus.EXECUTED

        response = admin_client.get(reverse('proposal-status', args=[proposal_id]))
        assert response.data == {
            'id': proposal_id,
            'status': ProposalStatus.EXECUTED,
            'ai_score': 86,
            'transfer_status': 'completed',
        }

        response = admin_client.get(reverse('list-project-milestones', args=[project.pk]))
        first = response.data[0]
        assert first['status'] == 'completed'
        assert first['allocated_amount'] == 1500
        assert first['remaining_amount'] == 0
        assert response.data[1]['status'] == 'pending'

    def test_only_operators_decide(self, created, client_for, charity_admin):
        response = client_for(charity_admin).post(
            reverse('decide-proposal', args=[created['id']]), {'approved': True}, format='json',
        )
        assert response.status_code == 403

    def test_execute_unapproved(self, created, client_for, charity_admin, custodian):
        response = client_for(charity_admin).post(reverse('execute-proposal', args=[created['id']]))
        assert response.status_code == 409
        assert response.data['code'] == 'not_approved'

    def test_vote_twice(self, created, client_for, make_pool, project, donor):
        from pools.services import DonationLedger

        pool = make_pool(projects=[project])
        DonationLedger().record_donation(donor=donor, project=project, pool=pool, amount=50, eligible=True)
        client = client_for(donor)
        url = reverse('vote-proposal', args=[created['id']])

        assert client.post(url, {'approve': True}, format='json').status_code == 201
        response = client.post(url, {'approve': False}, format='json')
        assert response.status_code == 409
        assert response.data['code'] == 'already_voted'

    def test_retrieve(self, created, client_for, donor):
        response = client_for(donor).get(reverse('retrieve-proposal', args=[created['id']]))
        assert response.status_code == 200
        assert response.data['amount'] == 1500

    def test_missing_proposal(self, client_for, donor):
        response = client_for(donor).get(reverse('proposal-status', args=[999999]))
        assert response.status_code == 404


def test_milestones_filter_by_position(client_for, donor, project):
    response = client_for(donor).get(reverse('list-project-milestones', args=[project.pk]), {'position': 1})
    assert response.status_code == 200
    assert [m['percentage'] for m in response.data] == [70]
    assert response.data[0]['allocated_amount'] == 3500
