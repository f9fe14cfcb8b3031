from django.apps import AppConfig


class CharityProjectsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'charity_projects'
    verbose_name = 'Charity projects'
