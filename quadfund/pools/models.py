from django.db import models
from django.contrib.auth import get_user_model
from django.utils import timezone
from auditlog.registry import auditlog

from charity_projects.models import Project

User = get_user_model()


class PoolState(models.TextChoices):
    SCHEDULED = 'scheduled', 'Scheduled'
    ACTIVE = 'active', 'Active'
    ENDED = 'ended', 'Ended'
    DISTRIBUTED = 'distributed', 'Distributed'


class Pool(models.Model):
    """
    A quadratic-funding matching pool.

    The lifecycle state is never stored: it follows from the clock, the
    ``start_time``/``end_time`` window and ``is_distributed`` (see ``state``).
    """
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    sponsor = models.ForeignKey(User, related_name='sponsored_pools', on_delete=models.PROTECT)
    wallet_address = models.CharField(max_length=64, help_text="Custody wallet holding the matching funds")
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    total_funds = models.PositiveBigIntegerField(default=0)
    is_distributed = models.BooleanField(default=False)
    distributed_at = models.DateTimeField(null=True, blank=True)
    projects = models.ManyToManyField(Project, through='PoolProject', related_name='pools')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Pool {self.name} (#{self.pk})"

    def state(self, now=None):
        if self.is_distributed:
            return PoolState.DISTRIBUTED
        now = now or timezone.now()
        if now < self.start_time:
            return PoolState.SCHEDULED
        if now < self.end_time:
            return PoolState.ACTIVE
        return PoolState.ENDED


class PoolProject(models.Model):
    pool = models.ForeignKey(Pool, on_delete=models.CASCADE, related_name='pool_projects')
    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='pool_registrations')
    registered_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['pool', 'project'], name='unique_pool_project'),
        ]

    def __str__(self):
        return f"{self.project} in {self.pool}"


class PoolContribution(models.Model):
    """Sponsor funding of the matching pool."""
    pool = models.ForeignKey(Pool, on_delete=models.PROTECT, related_name='contributions')
    contributor = models.ForeignKey(User, on_delete=models.PROTECT, related_name='pool_contributions')
    amount = models.PositiveBigIntegerField()
    tx_reference = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.amount} to {self.pool}"


class Donation(models.Model):
    donor = models.ForeignKey(User, on_delete=models.PROTECT, related_name='donations')
    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='donations')
    pool = models.ForeignKey(Pool, on_delete=models.PROTECT, related_name='donations')
    amount = models.PositiveBigIntegerField()
    eligible = models.BooleanField(default=False)
    tx_reference = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Donation of {self.amount} to {self.project} by {self.donor}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Donations are immutable once recorded.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Donations are immutable once recorded.")


class ProjectPoolAggregate(models.Model):
    """
    Running tallies of a project inside a pool.

    ``raw_total``/``raw_donation_count`` count every donation and are for
    display only. ``donation_sum``/``unique_contributor_count`` count eligible
    donations only and are the quadratic-funding inputs.
    """
    pool = models.ForeignKey(Pool, on_delete=models.CASCADE, related_name='aggregates')
    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='pool_aggregates')
    raw_total = models.PositiveBigIntegerField(default=0)
    raw_donation_count = models.PositiveIntegerField(default=0)
    donation_sum = models.PositiveBigIntegerField(default=0)
    unique_contributor_count = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['pool', 'project'], name='unique_pool_project_aggregate'),
        ]

    def __str__(self):
        return f"{self.project} in {self.pool}: {self.donation_sum} from {self.unique_contributor_count} donors"


class EligibleContributor(models.Model):
    pool = models.ForeignKey(Pool, on_delete=models.CASCADE, related_name='eligible_contributors')
    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='+')
    donor = models.ForeignKey(User, on_delete=models.PROTECT, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['pool', 'project', 'donor'], name='unique_eligible_contributor'),
        ]


class Allocation(models.Model):
    pool = models.ForeignKey(Pool, on_delete=models.PROTECT, related_name='allocations')
    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='allocations')
    amount = models.PositiveBigIntegerField()
    destination = models.CharField(max_length=64, blank=True)
    tx_reference = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['pool', 'id']
        constraints = [
            models.UniqueConstraint(fields=['pool', 'project'], name='unique_pool_allocation'),
        ]

    def __str__(self):
        return f"{self.amount} to {self.project} from {self.pool}"


class DistributionTransfer(models.Model):
    """
    One planned payout of a distribution, written before any money moves.

    Rows are committed on their own, so they outlive a distribution attempt
    that fails halfway. A later attempt must reproduce the same plan: the
    custodian has already honoured some of these references.
    """
    STATUS_CHOICES = (
        ('pending', 'Pending'),
        ('sent', 'Sent'),
        ('failed', 'Failed'),
    )

    pool = models.ForeignKey(Pool, on_delete=models.PROTECT, related_name='distribution_transfers')
    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='+')
    reference = models.CharField(max_length=100, unique=True)
    amount = models.PositiveBigIntegerField()
    destination = models.CharField(max_length=64)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending')
    tx_reference = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['pool', 'id']

    def __str__(self):
        return f"{self.reference}: {self.amount} to {self.destination} ({self.status})"


auditlog.register(Pool)
auditlog.register(Allocation)
auditlog.register(DistributionTransfer)
