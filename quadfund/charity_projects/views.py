from django.shortcuts import get_object_or_404
from rest_framework import generics
from rest_framework.permissions import IsAuthenticated
from rest_framework_simplejwt.authentication import JWTAuthentication
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import swagger_auto_schema

from . import serializers as my_serializers
from .models import Project, Milestone


class ListProjectMilestonesAPIView(generics.ListAPIView):
    """
    List the milestones of a project together with their derived status
    (pending / in_progress / completed) and the amount still withdrawable.
    """
    serializer_class = my_serializers.MilestoneStatusSerializer
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication]
    pagination_class = None
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['position']

    @swagger_auto_schema(
        operation_summary="List project milestones with derived status",
        responses={200: my_serializers.MilestoneStatusSerializer(many=True), 404: "Not found"}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        project = get_object_or_404(Project, id=self.kwargs['project_id'])
        return Milestone.objects.filter(project=project).select_related('project')
