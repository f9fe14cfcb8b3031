from django.urls import path

from . import views as my_views

urlpatterns = [
    path('webhooks/bank/', my_views.BankWebhookView.as_view(), name='bank-webhook'),
]
