from rest_framework.permissions import BasePermission

from apps.accounts.models import UserRole


ROLE_CAPABILITIES = {
    UserRole.ADMIN: {
        "users.manage",
        "categories.view",
        "categories.manage",
    },
    UserRole.MANAGER: {
        "categories.view",
        "expenses.view.own",
        "expenses.author",
        "expenses.export",
    },
    UserRole.ACCOUNTANT: {
        "categories.view",
        "expenses.view.own",
        "expenses.view",
        "expenses.review",
        "expenses.export",
    },
    UserRole.SUPERVISOR: {
        "categories.view",
        "expenses.view.own",
        "expenses.view",
        "expenses.author",
        "expenses.review",
        "expenses.export",
    },
}

ROLE_PRIORITY = (UserRole.ADMIN, UserRole.SUPERVISOR, UserRole.ACCOUNTANT, UserRole.MANAGER)


def resolve_role(user):
    group_names = set(user.groups.values_list("name", flat=True))
    for role in ROLE_PRIORITY:
        if role in group_names:
            return role
    return getattr(user, "role", UserRole.MANAGER)


def has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    return capability in ROLE_CAPABILITIES.get(resolve_role(user), set())


class RolePermission(BasePermission):
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        capability_map = getattr(view, "capability_map", {})
        action = getattr(view, "action", None) or request.method.lower()
        required = capability_map.get(action) or capability_map.get(request.method.lower()) or set()
        if not required:
            return True

        user_role = resolve_role(request.user)
        user_caps = ROLE_CAPABILITIES.get(user_role, set())
        return all(cap in user_caps for cap in required)
