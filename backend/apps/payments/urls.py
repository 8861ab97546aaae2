"""
Payments app URLs.

Stable webhook URLs (configured in the provider dashboards):
https://<domain>/api/v1/payments/webhooks/paystack/
https://<domain>/api/v1/payments/webhooks/centiiv/
Do not change these paths without updating the provider configuration.
"""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register(r'admin/transactions', views.AdminTransactionViewSet, basename='admin-transaction')
router.register(r'admin/events', views.GatewayEventLogViewSet, basename='admin-gateway-event')

urlpatterns = [
    path('purchases/card/', views.CardPurchaseView.as_view(), name='purchase-card'),
    path('purchases/card/verify/', views.CardVerifyView.as_view(), name='purchase-card-verify'),
    path('purchases/chain/', views.ChainPurchaseView.as_view(), name='purchase-chain'),
    path('purchases/invoice/', views.InvoicePurchaseView.as_view(), name='purchase-invoice'),
    path('purchases/manual/', views.ManualPurchaseView.as_view(), name='purchase-manual'),
    path('purchases/<str:transaction_id>/chain-hash/', views.ChainHashView.as_view(), name='purchase-chain-hash'),
    path('purchases/<str:transaction_id>/cancel/', views.CancelPurchaseView.as_view(), name='purchase-cancel'),
    path('transactions/', views.UserTransactionsView.as_view(), name='user-transactions'),
    path('transactions/<str:transaction_id>/', views.UserTransactionDetailView.as_view(), name='user-transaction-detail'),
    path('holdings/', views.HoldingsView.as_view(), name='holdings'),
    path('webhooks/paystack/', views.PaystackWebhookView.as_view(), name='paystack-webhook'),
    path('webhooks/centiiv/', views.CentiivWebhookView.as_view(), name='centiiv-webhook'),
    path('callbacks/centiiv/', views.CentiivCallbackView.as_view(), name='centiiv-callback'),
    path('admin/grants/', views.AdminGrantView.as_view(), name='admin-grant'),
    path('admin/report/', views.PurchaseReportView.as_view(), name='admin-purchase-report'),
    path('', include(router.urls)),
]
