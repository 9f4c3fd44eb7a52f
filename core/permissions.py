"""
Custom permission classes for the CellFlip marketplace.

Access is decided by one role policy: a view lists the roles it serves in
``allowed_roles`` and HasRole checks the authenticated user against it.
Object-level classes narrow access to the owner or parties of a record.
"""

from rest_framework import permissions


class HasRole(permissions.BasePermission):
    """
    Permission class that allows only the roles named by the view.

    The view declares ``allowed_roles``, e.g. ('vendor',). A per-method
    mapping is also accepted: {'GET': ('client', 'vendor'), 'POST': ('vendor',)}.
    Staff users count as admins. Methods missing from a mapping are open to
    any authenticated user.

    Usage:
        class MyView(APIView):
            permission_classes = [IsAuthenticated, HasRole]
            allowed_roles = ('admin',)
    """

    message = 'You do not have permission to perform this action.'

    def get_allowed_roles(self, request, view):
        allowed_roles = getattr(view, 'allowed_roles', None)
        if isinstance(allowed_roles, dict):
            return allowed_roles.get(request.method)
        return allowed_roles

    def has_permission(self, request, view):
        """
        Check if the user is authenticated and holds one of the allowed roles.

        Returns:
            bool: True if access is allowed, False otherwise
        """
        if not request.user or not request.user.is_authenticated:
            return False

        allowed_roles = self.get_allowed_roles(request, view)
        if allowed_roles is None:
            return True

        if 'admin' in allowed_roles and request.user.is_admin_user():
            return True

        if request.user.role not in allowed_roles:
            self.message = (
                f'This action is only available to: {", ".join(allowed_roles)}.'
            )
            return False

        return True


class IsApprovedPartner(permissions.BasePermission):
    """
    Vendors and agents must be approved by an admin before they can act.

    Other roles are not affected.
    """

    message = 'Your account is awaiting admin approval.'

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if user.role in ('vendor', 'agent'):
            return user.is_approved
        return True


class IsListingOwner(permissions.BasePermission):
    """Object-level permission: only the client who listed the device."""

    message = 'You do not have permission to modify this listing.'

    def has_object_permission(self, request, view, obj):
        return obj.client_id == request.user.id


class IsTransactionParty(permissions.BasePermission):
    """
    Object-level permission for transactions.

    Allows the client, the vendor and the assigned agent. Admins can see
    every transaction.
    """

    message = 'You are not a party to this transaction.'

    def has_object_permission(self, request, view, obj):
        if request.user.is_admin_user():
            return True
        return obj.is_party(request.user)
