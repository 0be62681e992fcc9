"""
Tenant and user API URLs.
"""
from django.urls import path

from apps.tenants import views

urlpatterns = [
    path('tenants/', views.TenantListCreateView.as_view(), name='tenant-list'),
    path('tenants/<uuid:tenant_id>/', views.TenantDetailView.as_view(), name='tenant-detail'),
    path(
        'tenants/<uuid:tenant_id>/resume-provisioning/',
        views.TenantResumeProvisioningView.as_view(),
        name='tenant-resume-provisioning'
    ),
    path('tenants/<uuid:tenant_id>/users/', views.TenantUserListView.as_view(), name='tenant-users'),
    path('users/', views.UserListCreateView.as_view(), name='user-list'),
    path('users/<uuid:principal_id>/', views.UserDetailView.as_view(), name='user-detail'),
]
