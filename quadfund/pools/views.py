from django.shortcuts import get_object_or_404
from rest_framework import permissions, status, views
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from charity_projects.models import Project
from .models import Pool
from .serializers import (
	AllocationSerializer,
	ContributionSerializer,
	DistributionRequestSerializer,
	DistributionResultSerializer,
	DonationCreateSerializer,
	DonationSerializer,
	PoolCreateSerializer,
	PoolSummarySerializer,
	ProjectRegistrationSerializer,
)
from .services import AllocationEngine, DonationLedger, PoolLifecycle


POOL_ID_PARAMETER = openapi.Parameter(
	'pk',
	openapi.IN_PATH,
	description="Pool ID",
	type=openapi.TYPE_INTEGER,
)


class PoolCreateView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="Create a matching pool",
		request_body=PoolCreateSerializer,
		responses={201: PoolCreateSerializer(), 400: "Validation error", 403: "Forbidden"}
	)
	def post(self, request):
		serializer = PoolCreateSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		pool = PoolLifecycle().create_pool(sponsor=request.user, **serializer.validated_data)
		return Response(PoolCreateSerializer(pool).data, status=status.HTTP_201_CREATED)


class PoolSummaryView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="Retrieve a pool summary",
		manual_parameters=[POOL_ID_PARAMETER],
		responses={200: PoolSummarySerializer(), 404: "Not found"}
	)
	def get(self, request, pk):
		pool = get_object_or_404(Pool, pk=pk)
		return Response(PoolSummarySerializer(PoolLifecycle().summary(pool)).data)


class PoolProjectRegisterView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="Register a project to a pool",
		manual_parameters=[POOL_ID_PARAMETER],
		request_body=ProjectRegistrationSerializer,
		responses={201: "Registered", 400: "Validation error", 403: "Forbidden", 409: "Pool already ended"}
	)
	def post(self, request, pk):
		pool = get_object_or_404(Pool, pk=pk)
		serializer = ProjectRegistrationSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		project = get_object_or_404(Project, pk=serializer.validated_data['project_id'])
		PoolLifecycle().register_project(user=request.user, pool=pool, project=project)
		return Response({"pool_id": pool.pk, "project_id": project.pk}, status=status.HTTP_201_CREATED)


class PoolContributeView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="Add matching funds to a pool",
		manual_parameters=[POOL_ID_PARAMETER],
		request_body=ContributionSerializer,
		responses={201: ContributionSerializer(), 400: "Validation error", 403: "Forbidden", 409: "Pool closed"}
	)
	def post(self, request, pk):
		pool = get_object_or_404(Pool, pk=pk)
		serializer = ContributionSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		contribution = PoolLifecycle().contribute(
			user=request.user,
			pool=pool,
			amount=serializer.validated_data['amount'],
			tx_reference=serializer.validated_data.get('tx_reference', ''),
		)
		return Response(ContributionSerializer(contribution).data, status=status.HTTP_201_CREATED)


class PoolEndEarlyView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="End a pool before its scheduled end time",
		manual_parameters=[POOL_ID_PARAMETER],
		responses={200: PoolSummarySerializer(), 403: "Forbidden", 409: "Pool already ended"}
	)
	def post(self, request, pk):
		lifecycle = PoolLifecycle()
		pool = get_object_or_404(Pool, pk=pk)
		pool = lifecycle.end_pool_early(user=request.user, pool=pool)
		return Response(PoolSummarySerializer(lifecycle.summary(pool)).data)


class DonationCreateView(views.APIView):
	"""
	Donate to a project through a pool. The donation counts toward quadratic
	matching only when the donor's identity is verified.
	"""
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="Donate to a project in a pool",
		manual_parameters=[POOL_ID_PARAMETER],
		request_body=DonationCreateSerializer,
		responses={201: DonationSerializer(), 400: "Validation error", 409: "Pool not active"}
	)
	def post(self, request, pk):
		pool = get_object_or_404(Pool, pk=pk)
		serializer = DonationCreateSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		project = get_object_or_404(Project, pk=serializer.validated_data['project_id'])
		donation = DonationLedger().record_donation(
			donor=request.user,
			project=project,
			pool=pool,
			amount=serializer.validated_data['amount'],
			eligible=request.user.is_identity_verified,
			tx_reference=serializer.validated_data.get('tx_reference', ''),
		)
		return Response(DonationSerializer(donation).data, status=status.HTTP_201_CREATED)


class PoolDistributeView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="Compute and distribute the quadratic-funding allocations",
		manual_parameters=[POOL_ID_PARAMETER],
		request_body=DistributionRequestSerializer,
		responses={
			200: DistributionResultSerializer(),
			400: "Validation error",
			403: "Forbidden",
			409: "Pool not ended, empty, or already distributed",
			502: "Transfer failed; nothing was distributed",
		}
	)
	def post(self, request, pk):
		pool = get_object_or_404(Pool, pk=pk)
		serializer = DistributionRequestSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		result = AllocationEngine().compute_and_distribute(
			user=request.user,
			pool=pool,
			projects=serializer.validated_data['project_ids'],
			destinations=serializer.validated_data['destinations'],
		)
		return Response(DistributionResultSerializer(result).data, status=status.HTTP_200_OK)


class PoolAllocationsView(views.APIView):
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="List the allocations of a pool",
		manual_parameters=[POOL_ID_PARAMETER],
		responses={200: AllocationSerializer(many=True), 404: "Not found"}
	)
	def get(self, request, pk):
		pool = get_object_or_404(Pool, pk=pk)
		return Response(AllocationEngine().allocations(pool))
