from rest_framework import serializers

from .models import Pool, Donation, PoolContribution, Allocation


class PoolCreateSerializer(serializers.ModelSerializer):
    class Meta:
        model = Pool
        fields = ("id", "name", "description", "wallet_address", "start_time", "end_time")
        read_only_fields = ("id",)


class PoolSummarySerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    total_funds = serializers.IntegerField()
    project_count = serializers.IntegerField()
    is_distributed = serializers.BooleanField()
    state = serializers.CharField()


class ProjectRegistrationSerializer(serializers.Serializer):
    project_id = serializers.IntegerField()


class ContributionSerializer(serializers.ModelSerializer):
    # Range checks are left to the service so the error carries its code.
    amount = serializers.IntegerField()

    class Meta:
        model = PoolContribution
        fields = ("id", "amount", "tx_reference", "created_at")
        read_only_fields = ("id", "created_at")


class DonationCreateSerializer(serializers.Serializer):
    project_id = serializers.IntegerField()
    amount = serializers.IntegerField()
    tx_reference = serializers.CharField(max_length=255, required=False, allow_blank=True)


class DonationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Donation
        fields = ("id", "pool", "project", "donor", "amount", "eligible", "tx_reference", "created_at")
        read_only_fields = fields


class DistributionRequestSerializer(serializers.Serializer):
    project_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
    destinations = serializers.ListField(child=serializers.CharField(max_length=64), allow_empty=False)


class AllocationSerializer(serializers.ModelSerializer):
    pool_id = serializers.IntegerField(read_only=True)
    project_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Allocation
        fields = ("pool_id", "project_id", "amount")
        read_only_fields = fields


class DistributionResultSerializer(serializers.Serializer):
    pool_id = serializers.IntegerField()
    allocations = AllocationSerializer(many=True)
    unallocated_remainder = serializers.IntegerField()
