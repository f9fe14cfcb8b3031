from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.contrib.auth import get_user_model

User = get_user_model()


class Project(models.Model):
    charity_admin = models.ForeignKey(User, related_name='managed_projects', on_delete=models.PROTECT)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    funding_goal = models.PositiveBigIntegerField(help_text="Funding goal in minor currency units")
    wallet_address = models.CharField(max_length=64, help_text="Custody wallet holding the project's funds")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} (#{self.pk})"

    def milestone_percentage_total(self):
        return self.milestones.aggregate(total=models.Sum('percentage'))['total'] or 0


class Milestone(models.Model):
    """
    A percentage slice of the project's funding goal. Its status
    (pending / in_progress / completed) is derived from the proposals filed
    against it, see ``proposals.services.milestone_status``.
    """
    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name="milestones")
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    percentage = models.PositiveSmallIntegerField(validators=[MinValueValidator(1), MaxValueValidator(100)])
    position = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ['project', 'position', 'id']

    def __str__(self):
        return f"{self.title} ({self.percentage}% of {self.project.name})"

    @property
    def allocated_amount(self):
        return self.project.funding_goal * self.percentage // 100
