"""
RBAC API URLs.
"""
from django.urls import path

from apps.rbac import views

urlpatterns = [
    path('roles/', views.RoleListView.as_view(), name='role-list'),
    path('users/<uuid:principal_id>/roles/', views.UserRoleListView.as_view(), name='user-roles'),
    path(
        'users/<uuid:principal_id>/roles/<uuid:role_id>/',
        views.UserRoleDetailView.as_view(),
        name='user-role-detail'
    ),
    path('audit-records/', views.AuditRecordListView.as_view(), name='audit-record-list'),
]
