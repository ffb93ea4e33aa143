"""
Studygram URL Configuration
"""
from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Studygram API Server',
        'version': '1.0',
        'endpoints': {
            'feed': '/api/feed/',
            'posts': '/api/posts/<id>/',
            'comments': '/api/posts/<id>/comments/',
            'like': '/api/posts/<id>/like/',
            'files': '/api/files/<id>/download/',
            'modules': '/api/modules/',
            'me': '/api/me/',
            'auth': '/api/auth/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('studyfeed.urls')),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
