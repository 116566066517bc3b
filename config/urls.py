"""
URL configuration for the project access engine.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # API v1
    path('v1/', include('apps.core.urls')),

    # Access checks, project teams and organisation members
    path('v1/', include('apps.rbac.urls')),

    # Organisation projects
    path('v1/', include('apps.tenants.urls')),
]
