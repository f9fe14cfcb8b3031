from django.contrib import admin

from .models import (
    Allocation,
    DistributionTransfer,
    Donation,
    Pool,
    PoolContribution,
    PoolProject,
    ProjectPoolAggregate,
)


class PoolProjectInline(admin.TabularInline):
    model = PoolProject
    extra = 0


@admin.register(Pool)
class PoolAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'sponsor', 'start_time', 'end_time', 'total_funds', 'is_distributed')
    list_filter = ('is_distributed',)
    search_fields = ('name', 'sponsor__email')
    # Funds and distribution only change through the services.
    readonly_fields = ('total_funds', 'is_distributed', 'distributed_at')
    inlines = [PoolProjectInline]


@admin.register(PoolContribution)
class PoolContributionAdmin(admin.ModelAdmin):
    list_display = ('id', 'pool', 'contributor', 'amount', 'tx_reference', 'created_at')
    search_fields = ('contributor__email', 'tx_reference')


@admin.register(Donation)
class DonationAdmin(admin.ModelAdmin):
    list_display = ('id', 'pool', 'project', 'donor', 'amount', 'eligible', 'created_at')
    list_filter = ('eligible',)
    search_fields = ('donor__email', 'project__name', 'tx_reference')

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ProjectPoolAggregate)
class ProjectPoolAggregateAdmin(admin.ModelAdmin):
    list_display = ('pool', 'project', 'raw_total', 'raw_donation_count', 'donation_sum', 'unique_contributor_count')
    readonly_fields = ('raw_total', 'raw_donation_count', 'donation_sum', 'unique_contributor_count')


@admin.register(Allocation)
class AllocationAdmin(admin.ModelAdmin):
    list_display = ('pool', 'project', 'amount', 'destination', 'tx_reference', 'created_at')

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(DistributionTransfer)
class DistributionTransferAdmin(admin.ModelAdmin):
    list_display = ('reference', 'pool', 'project', 'amount', 'destination', 'status', 'tx_reference', 'updated_at')
    list_filter = ('status',)
    search_fields = ('reference', 'tx_reference', 'destination')

    def has_change_permission(self, request, obj=None):
        return False
