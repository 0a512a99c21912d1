"""slurmadapter URL Configuration

Every RPC method is a POST on /api/<service>/<Method>/, for example
/api/job/GetJobs/.
"""

from django.urls import include, path
from rest_framework import routers
from accounts.views import AccountViewSet, UserViewSet
from cluster.views import ConfigViewSet, VersionViewSet
from jobs.views import JobViewSet

router = routers.DefaultRouter()

router.register(r'account', AccountViewSet, basename='account')
router.register(r'user', UserViewSet, basename='user')
router.register(r'job', JobViewSet, basename='job')
router.register(r'config', ConfigViewSet, basename='config')
router.register(r'version', VersionViewSet, basename='version')

urlpatterns = [
    path('api/', include((router.urls, 'api'))),
    path('api-auth/', include('rest_framework.urls')),
    path('watchman/', include('watchman.urls')),
]
