from django.urls import path

from . import views as my_views

urlpatterns = [
    path('projects/<int:project_id>/milestones/', my_views.ListProjectMilestonesAPIView.as_view(), name='list-project-milestones'),
]
