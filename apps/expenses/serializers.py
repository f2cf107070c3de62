from django.conf import settings
from rest_framework import serializers

from apps.common.exceptions import PayloadTooLarge
from apps.expenses.models import Expense, ExpenseAttachment, ExpenseComment, ExpenseStatus
from apps.expenses.services import SORT_FIELDS


def _max_upload_message():
    megabytes = settings.EXPENSE_UPLOAD_MAX_BYTES // (1024 * 1024)
    return f"File too large! Maximum upload size is {megabytes}MB."


class ExpenseAttachmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = ExpenseAttachment
        fields = ["id", "file_name", "created_at"]
        read_only_fields = fields


class ExpenseCommentSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source="user.username", read_only=True)

    class Meta:
        model = ExpenseComment
        fields = ["id", "user", "username", "message", "created_at"]
        read_only_fields = fields


class ExpenseSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source="user.username", read_only=True)
    category_name = serializers.CharField(source="category.name", read_only=True)
    sub_category_name = serializers.CharField(source="sub_category.name", read_only=True, default=None)
    attachments = ExpenseAttachmentSerializer(many=True, read_only=True)
    comments = ExpenseCommentSerializer(many=True, read_only=True)
    date = serializers.DateField(required=False, allow_null=True)
    receipt_files = serializers.ListField(
        child=serializers.FileField(allow_empty_file=True), write_only=True, required=False, default=list
    )
    delete_attachment_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1), write_only=True, required=False, default=list
    )
    delete_primary_image = serializers.BooleanField(write_only=True, required=False, default=False)

    class Meta:
        model = Expense
        fields = [
            "id",
            "description",
            "amount",
            "date",
            "status",
            "payment_mode",
            "tax_percentage",
            "batch_id",
            "user",
            "username",
            "category",
            "category_name",
            "sub_category",
            "sub_category_name",
            "receipt_image",
            "attachments",
            "comments",
            "receipt_files",
            "delete_attachment_ids",
            "delete_primary_image",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "status", "user", "receipt_image", "created_at", "updated_at"]

    def validate_description(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("description is required")
        return value

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("amount must be greater than 0")
        return value

    def validate_tax_percentage(self, value):
        if value is not None and not (0 <= value <= 100):
            raise serializers.ValidationError("tax_percentage must be between 0 and 100")
        return value

    def validate_batch_id(self, value):
        return (value or "").strip()

    def validate_receipt_files(self, files):
        limit = settings.EXPENSE_UPLOAD_MAX_BYTES
        for upload in files:
            if upload.size > limit:
                raise PayloadTooLarge(_max_upload_message())
        return files

    def validate(self, attrs):
        category = attrs.get("category", getattr(self.instance, "category", None))
        sub_category = attrs.get("sub_category", getattr(self.instance, "sub_category", None))
        if sub_category is not None and category is not None and sub_category.category_id != category.id:
            raise serializers.ValidationError({"sub_category": "sub category does not belong to the selected category"})
        return attrs

    def apply(self, instance=None):
        """Copy validated fields onto ``instance`` (or a new Expense) without saving.

        Returns the expense and the attachment changes for ``save_expense``.
        """
        data = dict(self.validated_data)
        changes = {
            "new_files": data.pop("receipt_files", []),
            "delete_attachment_ids": data.pop("delete_attachment_ids", []),
            "delete_primary_image": data.pop("delete_primary_image", False),
        }
        expense = instance if instance is not None else Expense()
        for field, value in data.items():
            setattr(expense, field, value)
        return expense, changes


class ReviewMessageSerializer(serializers.Serializer):
    message = serializers.CharField(required=False, allow_blank=True, default="")

    def __init__(self, *args, message_required=False, **kwargs):
        super().__init__(*args, **kwargs)
        self.message_required = message_required

    def validate_message(self, value):
        value = value.strip()
        if self.message_required and not value:
            raise serializers.ValidationError("message is required")
        return value


class ExpenseQuerySerializer(serializers.Serializer):
    search = serializers.CharField(required=False, allow_blank=True, default="")
    start_date = serializers.DateField(required=False, allow_null=True, default=None)
    end_date = serializers.DateField(required=False, allow_null=True, default=None)
    category_id = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=1)
    status = serializers.ListField(
        child=serializers.ChoiceField(choices=ExpenseStatus.choices), required=False, default=list
    )
    sort_field = serializers.ChoiceField(choices=sorted(SORT_FIELDS), required=False, default="date")
    sort_dir = serializers.CharField(required=False, default="DESC")
    page = serializers.IntegerField(required=False, default=0, min_value=0)
    size = serializers.IntegerField(required=False, default=None, min_value=1, allow_null=True)

    def validate_sort_dir(self, value):
        value = value.strip().upper()
        if value not in {"ASC", "DESC"}:
            raise serializers.ValidationError("sort_dir must be ASC or DESC")
        return value

    def validate_size(self, value):
        if value is not None and value > settings.EXPENSE_MAX_PAGE_SIZE:
            raise serializers.ValidationError(f"size must be at most {settings.EXPENSE_MAX_PAGE_SIZE}")
        return value

    def validate(self, attrs):
        start_date, end_date = attrs.get("start_date"), attrs.get("end_date")
        if start_date and end_date and start_date > end_date:
            raise serializers.ValidationError({"end_date": "end_date must not be before start_date"})
        return attrs

    def filter_kwargs(self):
        data = self.validated_data
        return {
            "keyword": data["search"] or None,
            "start_date": data["start_date"],
            "end_date": data["end_date"],
            "category_id": data["category_id"],
            "sort_field": data["sort_field"],
            "sort_direction": data["sort_dir"],
        }

    @classmethod
    def from_query_params(cls, query_params):
        data = {key: query_params.get(key) for key in query_params if key != "status"}
        statuses = query_params.getlist("status")
        if statuses:
            data["status"] = [item.strip().upper() for raw in statuses for item in raw.split(",") if item.strip()]
        serializer = cls(data=data)
        serializer.is_valid(raise_exception=True)
        return serializer
