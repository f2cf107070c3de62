from django.contrib.auth import get_user_model
from django.db.models import ProtectedError
from rest_framework import status, viewsets
from rest_framework.response import Response

from apps.accounts.serializers import UserSerializer
from apps.audit.services import record_audit
from apps.common.exceptions import error_response_body
from apps.common.permissions import RolePermission

User = get_user_model()


class UserViewSet(viewsets.ModelViewSet):
    queryset = User.objects.order_by("username")
    serializer_class = UserSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["users.manage"],
        "retrieve": ["users.manage"],
        "create": ["users.manage"],
        "update": ["users.manage"],
        "partial_update": ["users.manage"],
        "destroy": ["users.manage"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        role = self.request.query_params.get("role")
        if role:
            queryset = queryset.filter(role=role.strip().upper())
        return queryset

    def perform_create(self, serializer):
        user = serializer.save()
        record_audit(
            actor=self.request.user,
            action="accounts.user.create",
            entity_type="user",
            entity_id=user.id,
            payload={"username": user.username, "role": user.role},
        )

    def perform_update(self, serializer):
        old = self.get_object()
        before = {"username": old.username, "role": old.role, "is_active": old.is_active}
        user = serializer.save()
        record_audit(
            actor=self.request.user,
            action="accounts.user.update",
            entity_type="user",
            entity_id=user.id,
            payload={
                "before": before,
                "after": {"username": user.username, "role": user.role, "is_active": user.is_active},
                "password_changed": "password" in serializer.validated_data,
            },
        )

    def destroy(self, request, *args, **kwargs):
        user = self.get_object()
        if user.pk == request.user.pk:
            return Response(
                error_response_body("forbidden", "You cannot delete your own account."),
                status=status.HTTP_403_FORBIDDEN,
            )
        user_id, username = user.id, user.username
        try:
            user.delete()
        except ProtectedError:
            return Response(
                error_response_body("user_in_use", "User owns expenses or comments; disable the account instead."),
                status=status.HTTP_400_BAD_REQUEST,
            )
        record_audit(
            actor=request.user,
            action="accounts.user.delete",
            entity_type="user",
            entity_id=user_id,
            payload={"username": username},
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
