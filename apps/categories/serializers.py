from rest_framework import serializers

from apps.categories.models import Category, SubCategory, normalize_category_name


class SubCategorySerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True)

    class Meta:
        model = SubCategory
        fields = ["id", "name", "category", "category_name"]
        read_only_fields = ["id"]

    def validate_name(self, value):
        value = normalize_category_name(value)
        if not value:
            raise serializers.ValidationError("name is required")
        return value

    def validate(self, attrs):
        category = attrs.get("category", getattr(self.instance, "category", None))
        name = attrs.get("name", getattr(self.instance, "name", None))
        duplicates = SubCategory.objects.filter(category=category, name__iexact=name)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError({"name": "sub category already exists in this category"})
        return attrs


class CategorySerializer(serializers.ModelSerializer):
    sub_categories = SubCategorySerializer(many=True, read_only=True)

    class Meta:
        model = Category
        fields = ["id", "name", "sub_categories"]
        read_only_fields = ["id", "sub_categories"]

    def validate_name(self, value):
        value = normalize_category_name(value)
        if not value:
            raise serializers.ValidationError("name is required")
        duplicates = Category.objects.filter(name__iexact=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError("category already exists")
        return value


class SubCategoryQuerySerializer(serializers.Serializer):
    category = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=1)
