from rest_framework import generics, permissions, status, views
from rest_framework.response import Response
from rest_framework_simplejwt.authentication import JWTAuthentication
from django.shortcuts import get_object_or_404
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from accounts.permissions import IsOperator
from . import serializers as my_serializers
from .models import Proposal
from .services import ProposalService, proposal_status


PROPOSAL_ID_PARAMETER = openapi.Parameter(
    'id',
    openapi.IN_PATH,
    description="Proposal ID",
    type=openapi.TYPE_INTEGER,
)


def _get_proposal(proposal_id):
    return get_object_or_404(
        Proposal.objects.select_related('project', 'milestone', 'bank_account'),
        id=proposal_id,
    )


class CreateProposalAPIView(views.APIView):
    """
    Allows a charity admin (or a platform operator) to request a withdrawal
    against one milestone of a project. AI scoring is queued once the
    proposal is stored.
    """
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Create a withdrawal proposal",
        request_body=my_serializers.ProposalCreateSerializer,
        responses={
            201: my_serializers.ProposalDetailSerializer(),
            400: "Validation error",
            403: "Forbidden",
        }
    )
    def post(self, request):
        serializer = my_serializers.ProposalCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        proposal = ProposalService().create(user=request.user, **serializer.validated_data)

        return Response({
            "detail": "Proposal created successfully.",
            "proposal": my_serializers.ProposalDetailSerializer(proposal).data
        }, status=status.HTTP_201_CREATED)


class RetrieveProposalAPIView(generics.RetrieveAPIView):
    serializer_class = my_serializers.ProposalDetailSerializer
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    lookup_field = 'id'

    @swagger_auto_schema(operation_summary="Retrieve a proposal")
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_object(self):
        return _get_proposal(self.kwargs['id'])


class VerifyProposalAPIView(views.APIView):
    """Run AI scoring now. Allowed while the proposal is pending or scored."""
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Score a proposal's evidence",
        manual_parameters=[PROPOSAL_ID_PARAMETER],
        responses={
            200: my_serializers.ProposalDetailSerializer(),
            409: "Proposal already decided",
            502: "Verification service unavailable",
        }
    )
    def post(self, request, id):
        proposal = _get_proposal(id)
        proposal = ProposalService().ai_verify(proposal, user=request.user)
        return Response(my_serializers.ProposalDetailSerializer(proposal).data)


class VoteProposalAPIView(views.APIView):
    """
    Cast an advisory vote. Only donors to the project may vote, once each.
    """
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Vote on a proposal",
        manual_parameters=[PROPOSAL_ID_PARAMETER],
        request_body=my_serializers.VoteSerializer,
        responses={
            201: my_serializers.VoteSerializer(),
            403: "Not a donor to this project",
            409: "Already voted or voting closed",
        }
    )
    def post(self, request, id):
        proposal = _get_proposal(id)
        serializer = my_serializers.VoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vote = ProposalService().vote(
            proposal=proposal,
            user=request.user,
            approve=serializer.validated_data['approve'],
            comment=serializer.validated_data.get('comment', ''),
        )
        return Response(my_serializers.VoteSerializer(vote).data, status=status.HTTP_201_CREATED)


class DecideProposalAPIView(views.APIView):
    permission_classes = [permissions.IsAuthenticated, IsOperator]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Approve or reject a proposal",
        manual_parameters=[PROPOSAL_ID_PARAMETER],
        request_body=my_serializers.DecisionSerializer,
        responses={
            200: my_serializers.ProposalDetailSerializer(),
            403: "Forbidden",
            409: "Proposal already decided",
        }
    )
    def post(self, request, id):
        proposal = _get_proposal(id)
        serializer = my_serializers.DecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        proposal = ProposalService().decide(
            proposal=proposal,
            user=request.user,
            approved=serializer.validated_data['approved'],
        )
        return Response(my_serializers.ProposalDetailSerializer(proposal).data)


class ExecuteProposalAPIView(views.APIView):
    """
    Release the funds of an approved proposal. Crypto transfers settle in the
    response; bank transfers return with status ``executing`` and settle via
    the bank webhook.
    """
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Execute an approved proposal",
        manual_parameters=[PROPOSAL_ID_PARAMETER],
        responses={
            200: my_serializers.ProposalDetailSerializer(),
            403: "Forbidden",
            409: "Not approved or insufficient funds",
            502: "Transfer failed",
        }
    )
    def post(self, request, id):
        proposal = _get_proposal(id)
        proposal = ProposalService().execute(proposal=proposal, user=request.user)
        return Response(my_serializers.ProposalDetailSerializer(proposal).data)


class ProposalStatusAPIView(views.APIView):
    permission_classes = [permissions.IsAuthenticated]
    authentication_classes = [JWTAuthentication]

    @swagger_auto_schema(
        operation_summary="Proposal status with its latest transfer",
        manual_parameters=[PROPOSAL_ID_PARAMETER],
        responses={200: my_serializers.ProposalStatusSerializer()}
    )
    def get(self, request, id):
        proposal = _get_proposal(id)
        return Response(my_serializers.ProposalStatusSerializer(proposal_status(proposal)).data)
