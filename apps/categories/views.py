from django.db.models import ProtectedError
from rest_framework import status, viewsets
from rest_framework.response import Response

from apps.audit.services import record_audit
from apps.categories.models import Category, SubCategory
from apps.categories.serializers import CategorySerializer, SubCategoryQuerySerializer, SubCategorySerializer
from apps.common.exceptions import error_response_body
from apps.common.permissions import RolePermission

TAXONOMY_CAPABILITIES = {
    "list": ["categories.view"],
    "retrieve": ["categories.view"],
    "create": ["categories.manage"],
    "update": ["categories.manage"],
    "partial_update": ["categories.manage"],
    "destroy": ["categories.manage"],
}


class CategoryViewSet(viewsets.ModelViewSet):
    queryset = Category.objects.prefetch_related("sub_categories").order_by("name")
    serializer_class = CategorySerializer
    permission_classes = [RolePermission]
    capability_map = TAXONOMY_CAPABILITIES

    def get_queryset(self):
        queryset = super().get_queryset()
        query = self.request.query_params.get("q")
        if query and query.strip():
            queryset = queryset.filter(name__icontains=query.strip())
        return queryset

    def perform_create(self, serializer):
        category = serializer.save()
        record_audit(
            actor=self.request.user,
            action="categories.category.create",
            entity_type="category",
            entity_id=category.id,
            payload={"name": category.name},
        )

    def perform_update(self, serializer):
        before = self.get_object().name
        category = serializer.save()
        record_audit(
            actor=self.request.user,
            action="categories.category.update",
            entity_type="category",
            entity_id=category.id,
            payload={"before": {"name": before}, "after": {"name": category.name}},
        )

    def destroy(self, request, *args, **kwargs):
        category = self.get_object()
        category_id, name = category.id, category.name
        try:
            category.delete()
        except ProtectedError:
            return Response(
                error_response_body("category_in_use", "Category is referenced by existing expenses."),
                status=status.HTTP_400_BAD_REQUEST,
            )
        record_audit(
            actor=request.user,
            action="categories.category.delete",
            entity_type="category",
            entity_id=category_id,
            payload={"name": name},
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


class SubCategoryViewSet(viewsets.ModelViewSet):
    queryset = SubCategory.objects.select_related("category").order_by("name")
    serializer_class = SubCategorySerializer
    permission_classes = [RolePermission]
    capability_map = TAXONOMY_CAPABILITIES

    def get_queryset(self):
        queryset = super().get_queryset()
        query = SubCategoryQuerySerializer(data=self.request.query_params)
        query.is_valid(raise_exception=True)
        category_id = query.validated_data["category"]
        if category_id is not None:
            queryset = queryset.filter(category_id=category_id)
        return queryset

    def perform_create(self, serializer):
        sub_category = serializer.save()
        record_audit(
            actor=self.request.user,
            action="categories.subcategory.create",
            entity_type="subcategory",
            entity_id=sub_category.id,
            payload={"name": sub_category.name, "category_id": sub_category.category_id},
        )

    def perform_update(self, serializer):
        old = self.get_object()
        before = {"name": old.name, "category_id": old.category_id}
        sub_category = serializer.save()
        record_audit(
            actor=self.request.user,
            action="categories.subcategory.update",
            entity_type="subcategory",
            entity_id=sub_category.id,
            payload={"before": before, "after": {"name": sub_category.name, "category_id": sub_category.category_id}},
        )

    def destroy(self, request, *args, **kwargs):
        sub_category = self.get_object()
        sub_category_id = sub_category.id
        payload = {"name": sub_category.name, "category_id": sub_category.category_id}
        try:
            sub_category.delete()
        except ProtectedError:
            return Response(
                error_response_body("subcategory_in_use", "Sub category is referenced by existing expenses."),
                status=status.HTTP_400_BAD_REQUEST,
            )
        record_audit(
            actor=request.user,
            action="categories.subcategory.delete",
            entity_type="subcategory",
            entity_id=sub_category_id,
            payload=payload,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
