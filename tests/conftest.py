"""Shared fixtures for the QuadFund test-suite.

Provider doubles replace the fund custodian and the bank provider so no
test talks to the network. Webhook signatures are real HMACs computed with
``WEBHOOK_SECRET``.
"""
import base64
import hashlib
import hmac
import json
from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import CustomUser, Role
from charity_projects.models import Milestone, Project
from payments.models import BankAccount
from payments.providers.base import BaseFundCustodian
from payments.providers.wise import WiseProvider
from pools.models import Pool, PoolProject, ProjectPoolAggregate
from quadfund.exceptions import ExternalServiceError

WEBHOOK_SECRET = "test-webhook-secret"
CRYPTO_ADDRESS = "0x" + "ab" * 20


class FakeCustodian(BaseFundCustodian):
    """
    In-memory custody wallets. Repeating a reference returns the first tx.

    ``before_balance``/``before_transfer`` run once, just before the next call,
    to interleave a competing request. Destinations in ``lost_responses`` get
    the money but the caller sees an error, as when the reply never arrives.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.balances = {}
        self.transfers = []
        self.failing_destinations = set()
        self.lost_responses = set()
        self.before_balance = None
        self.before_transfer = None
        self._by_reference = {}

    def _run_hook(self, name):
        hook = getattr(self, name)
        if hook is not None:
            setattr(self, name, None)
            hook()

    def transfer(self, from_wallet, to_address, amount, reference=None):
        self._run_hook('before_transfer')
        if reference and reference in self._by_reference:
            return self._by_reference[reference]
        if to_address in self.failing_destinations:
            raise ExternalServiceError("custodian refused the transfer")
        tx_ref = f"0xtx{len(self.transfers) + 1}"
        self.transfers.append((from_wallet, to_address, amount, reference))
        self.balances[from_wallet] = self.balances.get(from_wallet, 0) - amount
        if reference:
            self._by_reference[reference] = tx_ref
        if to_address in self.lost_responses:
            raise ExternalServiceError("custodian connection reset")
        return tx_ref

    def get_balance(self, wallet):
        self._run_hook('before_balance')
        return self.balances.get(wallet, 0)


class FakeWiseProvider(WiseProvider):
    """Wise with the outbound calls stubbed; webhook validation is the real one."""

    def __init__(self):
        super().__init__(webhook_secret=WEBHOOK_SECRET)
        self.dispatched = []
        self.fail = False

    def initiate_transfer(self, bank_account, amount, currency, reference):
        if self.fail:
            raise ExternalServiceError("wise is down")
        provider_reference = f"wise-{len(self.dispatched) + 1}"
        self.dispatched.append((bank_account.pk, amount, currency, reference))
        return provider_reference


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def webhook_body(**payload) -> bytes:
    return json.dumps(payload).encode()


@pytest.fixture(autouse=True)
def _platform_settings(settings):
    settings.PROPOSAL_AUTO_AI_VERIFY = False
    settings.BANK_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.AI_VERIFICATION_BACKEND = 'heuristic'


@pytest.fixture
def custodian(monkeypatch):
    fake = FakeCustodian()
    monkeypatch.setattr('pools.services.get_fund_custodian', lambda: fake)
    monkeypatch.setattr('payments.services.get_fund_custodian', lambda: fake)
    return fake


@pytest.fixture
def bank_provider(monkeypatch):
    fake = FakeWiseProvider()
    monkeypatch.setattr('payments.services.get_bank_provider', lambda: fake)
    return fake


def _user(email, role, **extra):
    return CustomUser.objects.create_user(
        email=email,
        password='pass1234!',
        first_name=email.split('@')[0].title(),
        last_name='Test',
        role=role,
        **extra,
    )


@pytest.fixture
def operator(db):
    return _user('operator@quadfund.test', Role.PLATFORM)


@pytest.fixture
def owner(db):
    return _user('owner@quadfund.test', Role.OWNER)


@pytest.fixture
def sponsor(db):
    return _user('sponsor@quadfund.test', Role.DONOR)


@pytest.fixture
def charity_admin(db):
    return _user('charity@quadfund.test', Role.CHARITY_ADMIN)


@pytest.fixture
def other_charity_admin(db):
    return _user('other-charity@quadfund.test', Role.CHARITY_ADMIN)


@pytest.fixture
def make_donor(db):
    counter = {'n': 0}

    def _make(verified=True):
        counter['n'] += 1
        return _user(f"donor{counter['n']}@quadfund.test", Role.DONOR, is_identity_verified=verified)

    return _make


@pytest.fixture
def donor(make_donor):
    return make_donor()


@pytest.fixture
def make_project(charity_admin):
    counter = {'n': 0}

    def _make(funding_goal=5000, percentages=(30, 70), admin=None):
        counter['n'] += 1
        project = Project.objects.create(
            charity_admin=admin or charity_admin,
            name=f"Project {counter['n']}",
            description="Clean water wells",
            funding_goal=funding_goal,
            wallet_address=f"project-wallet-{counter['n']}",
        )
        for position, percentage in enumerate(percentages):
            Milestone.objects.create(
                project=project,
                title=f"Milestone {position + 1}",
                description=f"Deliver phase {position + 1} of the wells",
                percentage=percentage,
                position=position,
            )
        return project

    return _make


@pytest.fixture
def project(make_project):
    return make_project()


@pytest.fixture
def milestone(project):
    # 30% of 5000
    return project.milestones.get(position=0)


@pytest.fixture
def make_pool(sponsor):
    def _make(state='active', total_funds=0, projects=(), pool_sponsor=None):
        now = timezone.now()
        windows = {
            'scheduled': (now + timedelta(days=1), now + timedelta(days=2)),
            'active': (now - timedelta(days=1), now + timedelta(days=1)),
            'ended': (now - timedelta(days=2), now - timedelta(days=1)),
        }
        start_time, end_time = windows[state]
        pool = Pool.objects.create(
            name="Water Round",
            sponsor=pool_sponsor or sponsor,
            wallet_address="pool-wallet",
            start_time=start_time,
            end_time=end_time,
            total_funds=total_funds,
        )
        for p in projects:
            PoolProject.objects.create(pool=pool, project=p)
            ProjectPoolAggregate.objects.create(pool=pool, project=p)
        return pool

    return _make


@pytest.fixture
def withdrawal_account(charity_admin):
    return BankAccount.objects.create(
        owner=charity_admin,
        account_name="Wells For All",
        account_number="000123456789",
        routing_number="026009593",
        bank_name="Bank of Test",
        purpose='withdrawal',
        is_verified=True,
    )


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for():
    def _client(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    return _client
