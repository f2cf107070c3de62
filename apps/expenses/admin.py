from django.contrib import admin

from apps.expenses.models import Expense, ExpenseAttachment, ExpenseComment


class ExpenseAttachmentInline(admin.TabularInline):
    model = ExpenseAttachment
    extra = 0
    readonly_fields = ("file_name", "created_at")


class ExpenseCommentInline(admin.TabularInline):
    model = ExpenseComment
    extra = 0
    readonly_fields = ("user", "message", "created_at")


@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ("id", "description", "amount", "date", "status", "category", "user", "updated_at")
    list_filter = ("status", "payment_mode", "category", "date")
    search_fields = ("description", "batch_id", "category__name", "sub_category__name", "user__username")
    autocomplete_fields = ("user",)
    inlines = [ExpenseAttachmentInline, ExpenseCommentInline]


@admin.register(ExpenseComment)
class ExpenseCommentAdmin(admin.ModelAdmin):
    list_display = ("expense", "user", "created_at")
    search_fields = ("message", "user__username")
