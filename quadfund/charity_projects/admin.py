from django import forms
from django.contrib import admin

from .models import Project, Milestone


class MilestoneInlineFormSet(forms.BaseInlineFormSet):
    """Milestones of a project must split its funding goal exactly: 100% in total."""

    def clean(self):
        super().clean()
        total = 0
        for form in self.forms:
            if not getattr(form, 'cleaned_data', None) or form.cleaned_data.get('DELETE'):
                continue
            total += form.cleaned_data.get('percentage') or 0
        if total and total != 100:
            raise forms.ValidationError(f"Milestone percentages must sum to 100 (got {total}).")


class MilestoneInline(admin.TabularInline):
    model = Milestone
    formset = MilestoneInlineFormSet
    extra = 0
    fields = ('position', 'title', 'percentage', 'description')


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'charity_admin', 'funding_goal', 'wallet_address', 'is_active', 'created_at')
    list_filter = ('is_active',)
    search_fields = ('name', 'charity_admin__email', 'wallet_address')
    inlines = [MilestoneInline]
