"""
Role checks for every privileged operation.

All services call ``authorize(user, action, obj)`` instead of comparing owners
and roles inline, so the rules for who may do what live in ``_RULES`` only.
"""
import logging

from rest_framework.permissions import BasePermission

from quadfund.exceptions import NotAuthorized
from .models import Role

logger = logging.getLogger(__name__)


class Action:
    CREATE_POOL = 'pool.create'
    MANAGE_POOL = 'pool.manage'
    FUND_POOL = 'pool.fund'
    DISTRIBUTE_POOL = 'pool.distribute'
    DONATE = 'donation.create'
    CREATE_PROPOSAL = 'proposal.create'
    VERIFY_PROPOSAL = 'proposal.verify'
    VOTE_PROPOSAL = 'proposal.vote'
    DECIDE_PROPOSAL = 'proposal.decide'
    EXECUTE_PROPOSAL = 'proposal.execute'


def is_operator(user, obj=None):
    return user.role in (Role.OWNER, Role.PLATFORM)


def may_sponsor_pools(user, obj=None):
    # Sponsors hold donor accounts; charity admins are never pool sponsors.
    return user.role in (Role.OWNER, Role.PLATFORM, Role.DONOR)


def is_pool_sponsor_or_operator(user, pool):
    return is_operator(user) or pool.sponsor_id == user.id


def is_project_admin_or_operator(user, project):
    if is_operator(user):
        return True
    return user.role == Role.CHARITY_ADMIN and project.charity_admin_id == user.id


_RULES = {
    Action.CREATE_POOL: may_sponsor_pools,
    Action.MANAGE_POOL: is_pool_sponsor_or_operator,
    Action.FUND_POOL: is_pool_sponsor_or_operator,
    Action.DISTRIBUTE_POOL: is_pool_sponsor_or_operator,
    Action.DONATE: lambda user, obj: True,
    Action.CREATE_PROPOSAL: is_project_admin_or_operator,
    Action.VERIFY_PROPOSAL: is_project_admin_or_operator,
    Action.VOTE_PROPOSAL: lambda user, obj: True,
    Action.DECIDE_PROPOSAL: is_operator,
    Action.EXECUTE_PROPOSAL: is_project_admin_or_operator,
}


def authorize(user, action, obj=None):
    """Raise ``NotAuthorized`` unless ``user`` may perform ``action`` on ``obj``."""
    if user is None or not user.is_authenticated or not user.is_active:
        raise NotAuthorized("Authentication required.")

    rule = _RULES[action]
    if not rule(user, obj):
        logger.warning(
            "Denied %s for user %s (role=%s) on %r",
            action, user.pk, user.role, obj,
        )
        raise NotAuthorized(f"Your role does not allow {action}.")


class IsOperator(BasePermission):
    """Allow only platform operators and the owner."""
    message = "Only platform operators can perform this action."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and is_operator(user))
