from rest_framework import permissions


class IsNotGuest(permissions.BasePermission):
    """
    Permission: Guests may read but not change anything.
    """
    message = 'Guest accounts cannot perform this action.'

    def has_permission(self, request, view):
        if request.method in permissions.SAFE_METHODS:
            return True
        return bool(request.user and request.user.is_authenticated and request.user.can_transact)


class IsNeedOwner(permissions.BasePermission):
    """
    Permission: User must own the need.
    """
    message = 'Only the owner of this need can do that.'

    def has_object_permission(self, request, view, obj):
        # obj is a Need instance
        return obj.owner_id == request.user.id


class IsOfferProvider(permissions.BasePermission):
    """
    Permission: User must be the provider who made the offer.
    """
    message = 'Only the provider of this offer can do that.'

    def has_object_permission(self, request, view, obj):
        # obj is an Offer instance
        return obj.provider_id == request.user.id
