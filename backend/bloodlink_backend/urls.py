from django.contrib import admin
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from bloodbank.views import BloodRequestViewSet, SweepView

router = DefaultRouter()
router.register(r'requests', BloodRequestViewSet, basename='request')

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include(router.urls)),
    path('api/v1/sweep/', SweepView.as_view(), name='sweep'),
]
