from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register(r'admin/plans', views.AdminPlanViewSet, basename='admin-plan')

urlpatterns = [
    path('calculate/', views.PlanCalculatorView.as_view(), name='plan-calculate'),
    path('plans/', views.PlanListCreateView.as_view(), name='plan-list'),
    path('plans/<str:plan_id>/', views.PlanDetailView.as_view(), name='plan-detail'),
    path('plans/<str:plan_id>/pay/', views.PlanPaymentView.as_view(), name='plan-pay'),
    path('plans/<str:plan_id>/cancel/', views.PlanCancelView.as_view(), name='plan-cancel'),
    path('', include(router.urls)),
]
