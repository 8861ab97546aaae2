"""
URL configuration for the AfriMobile share platform.
"""
from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.http import HttpResponse
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView, SpectacularSwaggerView


def root_view(request):
    """Root view: links to the API schema."""
    return HttpResponse(
        '<html><head><title>AfriMobile Share Platform</title></head>'
        '<body><h1>API Documentation</h1>'
        '<p><a href="/api/schema/swagger-ui/">Swagger UI</a> | '
        '<a href="/api/schema/redoc/">ReDoc</a></p></body></html>',
        content_type='text/html'
    )


def favicon_view(request):
    return HttpResponse(status=204)


urlpatterns = [
    path("", root_view, name="root"),
    path("favicon.ico", favicon_view, name="favicon"),
    path("admin/", admin.site.urls),
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/schema/swagger-ui/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
    path("api/schema/redoc/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("api/v1/auth/", include("backend.apps.accounts.urls")),
    path("api/v1/shares/", include("backend.apps.shares.urls")),
    path("api/v1/payments/", include("backend.apps.payments.urls")),
    path("api/v1/installments/", include("backend.apps.installments.urls")),
    path("api/v1/referrals/", include("backend.apps.referrals.urls")),
    path("health/", include("backend.apps.health_check.urls")),
]

if settings.DEBUG:
    urlpatterns += static(settings.STATIC_URL, document_root=settings.STATIC_ROOT)
