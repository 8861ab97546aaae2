from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register(r'admin/entries', views.AdminReferralEntryViewSet, basename='admin-referral-entry')

urlpatterns = [
    path('earnings/', views.EarningsView.as_view(), name='referral-earnings'),
    path('tree/', views.ReferralTreeView.as_view(), name='referral-tree'),
    path('entries/', views.UserReferralEntriesView.as_view(), name='referral-entries'),
    path('admin/adjustments/', views.AdminAdjustmentView.as_view(), name='referral-admin-adjustment'),
    path('admin/sync/', views.AdminSyncView.as_view(), name='referral-admin-sync'),
    path('admin/reconcile/', views.AdminReconcileView.as_view(), name='referral-admin-reconcile'),
    path('', include(router.urls)),
]
