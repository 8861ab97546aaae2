from django.urls import path

from . import views

app_name = 'shares'

urlpatterns = [
    path('availability/', views.AvailabilityView.as_view(), name='availability'),
    path('quote/', views.QuoteView.as_view(), name='quote'),
    path('admin/statistics/', views.InventoryStatisticsView.as_view(), name='statistics'),
    path('admin/pricing/', views.PricingUpdateView.as_view(), name='pricing'),
]
