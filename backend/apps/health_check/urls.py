from django.urls import path

from .views import HealthDetailView, LivenessView

urlpatterns = [
    path('', LivenessView.as_view(), name='health_check'),
    path('detail/', HealthDetailView.as_view(), name='health_check_detail'),
]
