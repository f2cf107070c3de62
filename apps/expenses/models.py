from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class ExpenseStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    SUBMITTED = "SUBMITTED", "Submitted"
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"
    QUERIES_RAISED = "QUERIES_RAISED", "Queries raised"


class PaymentMode(models.TextChoices):
    CASH = "CASH", "Cash"
    CARD = "CARD", "Card"
    BANK_TRANSFER = "BANK_TRANSFER", "Bank transfer"
    CHEQUE = "CHEQUE", "Cheque"
    OTHER = "OTHER", "Other"


class ExpenseQuerySet(models.QuerySet):
    def with_details(self):
        return self.select_related("user", "category", "sub_category").prefetch_related(
            models.Prefetch("attachments", queryset=ExpenseAttachment.objects.order_by("id")),
            models.Prefetch("comments", queryset=ExpenseComment.objects.select_related("user").order_by("created_at", "id")),
        )


class Expense(models.Model):
    description = models.CharField(max_length=255)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    date = models.DateField()
    status = models.CharField(max_length=20, choices=ExpenseStatus.choices, default=ExpenseStatus.DRAFT)
    payment_mode = models.CharField(max_length=20, choices=PaymentMode.choices, default=PaymentMode.CASH)
    tax_percentage = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    batch_id = models.CharField(max_length=80, blank=True, default="")
    user = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="expenses")
    category = models.ForeignKey("categories.Category", on_delete=models.PROTECT, related_name="expenses")
    sub_category = models.ForeignKey(
        "categories.SubCategory", null=True, blank=True, on_delete=models.PROTECT, related_name="expenses"
    )
    # Pre-attachment single receipt; folded into attachments on save.
    receipt_image = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ExpenseQuerySet.as_manager()

    class Meta:
        ordering = ["-date", "-id"]
        indexes = [
            models.Index(fields=["user", "status"], name="expense_user_status_idx"),
            models.Index(fields=["status", "date"], name="expense_status_date_idx"),
            models.Index(fields=["category", "date"], name="expense_category_date_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="expense_amount_gt_zero"),
            models.CheckConstraint(
                condition=models.Q(tax_percentage__isnull=True)
                | models.Q(tax_percentage__gte=0, tax_percentage__lte=100),
                name="expense_tax_percentage_range",
            ),
        ]

    def clean(self):
        if self.sub_category_id and self.category_id and self.sub_category.category_id != self.category_id:
            raise ValidationError({"sub_category": "sub category does not belong to the selected category"})

    def __str__(self):
        return f"#{self.pk} {self.description} ({self.status})"


class ExpenseAttachment(models.Model):
    file_name = models.CharField(max_length=255)
    expense = models.ForeignKey(Expense, on_delete=models.CASCADE, related_name="attachments")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return self.file_name


class ExpenseComment(models.Model):
    expense = models.ForeignKey(Expense, on_delete=models.CASCADE, related_name="comments")
    user = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="expense_comments")
    message = models.TextField()
    created_at = models.DateTimeField(default=timezone.now, editable=False)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.user} on #{self.expense_id}: {self.message[:40]}"
