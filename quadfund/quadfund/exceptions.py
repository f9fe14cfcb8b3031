"""
Platform error taxonomy.

Every error raised by the services carries an error ``kind`` (what the caller
should do about it) and a ``code`` (what exactly went wrong). Views never catch
them; ``platform_exception_handler`` renders them as
``{"kind": ..., "code": ..., "detail": ...}``.
"""
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.views import exception_handler


class ErrorKind:
    VALIDATION = 'ValidationError'
    STATE = 'StateError'
    AUTHORIZATION = 'AuthorizationError'
    EXTERNAL_SERVICE = 'ExternalServiceError'
    INTEGRITY = 'IntegrityError'


class PlatformError(APIException):
    kind = ErrorKind.VALIDATION

    def payload(self):
        return {}


# ValidationError: bad input, caller must correct and resubmit.

class InvalidInput(PlatformError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = ErrorKind.VALIDATION
    default_detail = 'Invalid input.'
    default_code = 'invalid_input'


class InvalidAmount(InvalidInput):
    default_detail = 'Amount must be a positive integer.'
    default_code = 'invalid_amount'


class ArityMismatch(InvalidInput):
    default_detail = 'Projects and destinations must have the same length.'
    default_code = 'arity_mismatch'


class ProjectNotInPool(InvalidInput):
    default_detail = 'Project is not registered to this pool.'
    default_code = 'project_not_in_pool'


# StateError: operation not valid in the current lifecycle state.

class InvalidState(PlatformError):
    status_code = status.HTTP_409_CONFLICT
    kind = ErrorKind.STATE
    default_detail = 'Operation not allowed in the current state.'
    default_code = 'invalid_state'


class PoolNotActive(InvalidState):
    default_detail = 'The pool is not accepting donations.'
    default_code = 'pool_not_active'


class PoolNotEnded(InvalidState):
    default_detail = 'The pool has not ended yet.'
    default_code = 'pool_not_ended'


class EmptyPool(InvalidState):
    default_detail = 'The pool holds no matching funds.'
    default_code = 'empty_pool'


class AlreadyDistributed(InvalidState):
    default_detail = 'The pool has already been distributed.'
    default_code = 'already_distributed'

    def __init__(self, allocations=None, detail=None, code=None):
        super().__init__(detail, code)
        self.allocations = allocations or []

    def payload(self):
        return {'allocations': self.allocations}


class DistributionMismatch(InvalidState):
    default_detail = (
        'An earlier distribution attempt of this pool already started paying a different plan. '
        'Retry with the same projects and destinations.'
    )
    default_code = 'distribution_mismatch'


class UnknownTransfer(InvalidState):
    default_detail = 'No transfer is recorded under this provider reference yet.'
    default_code = 'unknown_transfer'


class AlreadyVoted(InvalidState):
    default_detail = 'You have already voted on this proposal.'
    default_code = 'already_voted'


class NotApproved(InvalidState):
    default_detail = 'Proposal must be approved before execution.'
    default_code = 'not_approved'


class InsufficientFunds(InvalidState):
    default_detail = 'Project wallet balance is lower than the proposal amount.'
    default_code = 'insufficient_funds'


# AuthorizationError: caller lacks the required role.

class NotAuthorized(PlatformError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = ErrorKind.AUTHORIZATION
    default_detail = 'You are not allowed to perform this action.'
    default_code = 'not_authorized'


# ExternalServiceError: AI or transfer provider unavailable, retryable.

class ExternalServiceError(PlatformError):
    status_code = status.HTTP_502_BAD_GATEWAY
    kind = ErrorKind.EXTERNAL_SERVICE
    default_detail = 'An external service is unavailable. Try again later.'
    default_code = 'external_service_unavailable'


class TransferFailed(ExternalServiceError):
    default_detail = 'Fund transfer failed.'
    default_code = 'transfer_failed'


# IntegrityError: unauthenticated payload, rejected without state change.

class SignatureMismatch(PlatformError):
    status_code = status.HTTP_401_UNAUTHORIZED
    kind = ErrorKind.INTEGRITY
    default_detail = 'Webhook signature verification failed.'
    default_code = 'invalid_signature'


_KIND_BY_STATUS = {
    status.HTTP_400_BAD_REQUEST: ErrorKind.VALIDATION,
    status.HTTP_401_UNAUTHORIZED: ErrorKind.AUTHORIZATION,
    status.HTTP_403_FORBIDDEN: ErrorKind.AUTHORIZATION,
    status.HTTP_404_NOT_FOUND: ErrorKind.VALIDATION,
    status.HTTP_409_CONFLICT: ErrorKind.STATE,
}


def platform_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, PlatformError):
        response.data = {
            'kind': exc.kind,
            'code': exc.get_codes(),
            'detail': exc.detail,
            **exc.payload(),
        }
        return response

    # DRF's own errors (serializer validation, 404, auth) get a kind too.
    data = response.data if isinstance(response.data, dict) else {'detail': response.data}
    if 'detail' not in data:
        data = {'detail': data}
    response.data = {
        'kind': _KIND_BY_STATUS.get(response.status_code, ErrorKind.VALIDATION),
        **data,
    }
    return response
