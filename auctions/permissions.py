from rest_framework import permissions


class IsSellerOrAdmin(permissions.BasePermission):
    """
    Object-level permission: only the auction's seller (or staff) may edit or delete it.
    """
    def has_object_permission(self, request, view, obj):
        if request.user.is_staff:
            return True
        return obj.seller_id == request.user.id


class IsRecipient(permissions.BasePermission):
    """
    Notifications can only be read or updated by the user they were sent to.
    """
    def has_object_permission(self, request, view, obj):
        return obj.user_id == request.user.id
