from rest_framework import serializers

from proposals.services import milestone_status, milestone_remaining
from .models import Project, Milestone


class ProjectSummarySerializer(serializers.ModelSerializer):
    """
    Serializer providing compact project information for nested responses.

    Fields (all read-only): id, name, funding_goal, wallet_address, is_active.
    """
    class Meta:
        model = Project
        fields = ['id', 'name', 'funding_goal', 'wallet_address', 'is_active']


class MilestoneStatusSerializer(serializers.ModelSerializer):
    """
    Serializer outlining milestone progress.

    Fields (all read-only): id, title, description, percentage, position,
    allocated_amount, remaining_amount, status. ``status`` is derived from the
    withdrawal proposals filed against the milestone.
    """
    allocated_amount = serializers.IntegerField(read_only=True)
    remaining_amount = serializers.SerializerMethodField()
    status = serializers.SerializerMethodField()

    class Meta:
        model = Milestone
        fields = [
            'id', 'title', 'description', 'percentage', 'position',
            'allocated_amount', 'remaining_amount', 'status',
        ]

    def get_remaining_amount(self, obj):
        return milestone_remaining(obj)

    def get_status(self, obj):
        return milestone_status(obj)
