from rest_framework import permissions

from .models import User

ADMIN_ROLES = [User.Role.ADMIN, User.Role.SUPER_ADMIN]


class IsAdmin(permissions.BasePermission):
    """
    Permission check for Admin users (includes Super Admins and staff).
    """

    def has_permission(self, request, view):
        user = request.user
        if not (user and getattr(user, 'is_authenticated', False)):
            return False
        return getattr(user, 'role', None) in ADMIN_ROLES or getattr(user, 'is_staff', False)

