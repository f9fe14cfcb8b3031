from django.urls import path

from . import views

urlpatterns = [
    path("", views.PoolCreateView.as_view(), name="pool-create"),
    path("<int:pk>/", views.PoolSummaryView.as_view(), name="pool-summary"),
    path("<int:pk>/projects/", views.PoolProjectRegisterView.as_view(), name="pool-register-project"),
    path("<int:pk>/contribute/", views.PoolContributeView.as_view(), name="pool-contribute"),
    path("<int:pk>/end/", views.PoolEndEarlyView.as_view(), name="pool-end"),
    path("<int:pk>/donations/", views.DonationCreateView.as_view(), name="pool-donate"),
    path("<int:pk>/distribute/", views.PoolDistributeView.as_view(), name="pool-distribute"),
    path("<int:pk>/allocations/", views.PoolAllocationsView.as_view(), name="pool-allocations"),
]
