from django.urls import path

from . import views as my_views

urlpatterns = [
    path('', my_views.CreateProposalAPIView.as_view(), name='create-proposal'),
    path('<int:id>/', my_views.RetrieveProposalAPIView.as_view(), name='retrieve-proposal'),
    path('<int:id>/ai-verify/', my_views.VerifyProposalAPIView.as_view(), name='verify-proposal'),
    path('<int:id>/votes/', my_views.VoteProposalAPIView.as_view(), name='vote-proposal'),
    path('<int:id>/decision/', my_views.DecideProposalAPIView.as_view(), name='decide-proposal'),
    path('<int:id>/execute/', my_views.ExecuteProposalAPIView.as_view(), name='execute-proposal'),
    path('<int:id>/status/', my_views.ProposalStatusAPIView.as_view(), name='proposal-status'),
]
