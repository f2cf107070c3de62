import csv
import io
import logging

from django.core.paginator import EmptyPage, Page, Paginator
from django.db import transaction
from django.utils import timezone

from apps.expenses.filters import build_expense_filter
from apps.expenses.models import Expense, ExpenseAttachment, ExpenseComment, ExpenseStatus
from apps.expenses.storage import ExpenseFileStorage

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "id": "id",
    "date": "date",
    "amount": "amount",
    "status": "status",
    "description": "description",
    "batchId": "batch_id",
    "category": "category__name",
    "createdAt": "created_at",
}

CSV_HEADER = "ID,Date,Category,SubCategory,Amount,Status,Description,User"


class ExpenseNotFound(Exception):
    def __init__(self, expense_id):
        super().__init__(f"Invalid expense Id:{expense_id}")
        self.expense_id = expense_id


def _storage(storage):
    return storage if storage is not None else ExpenseFileStorage()


def _lock_expense(expense_id):
    expense = Expense.objects.select_for_update().filter(pk=expense_id).first()
    if expense is None:
        raise ExpenseNotFound(expense_id)
    return expense


def find_expense(expense_id):
    return Expense.objects.with_details().filter(pk=expense_id).first()


def save_expense(expense, new_files=None, delete_attachment_ids=None, delete_primary_image=False, storage=None):
    """Persist ``expense`` together with its attachment changes.

    Files marked for deletion are removed from disk before the rows go, new
    uploads are stored and wrapped in attachments, and a legacy
    ``receipt_image`` is folded into the attachments exactly once. On return
    ``receipt_image`` is always ``None``.
    """
    storage = _storage(storage)
    if expense.date is None:
        expense.date = timezone.localdate()

    with transaction.atomic():
        existing = list(expense.attachments.order_by("id")) if expense.pk else []
        pending = []

        if delete_primary_image and expense.receipt_image:
            storage.delete(expense.receipt_image)
            expense.receipt_image = None

        if delete_attachment_ids:
            wanted = {int(attachment_id) for attachment_id in delete_attachment_ids}
            for attachment in [a for a in existing if a.id in wanted]:
                storage.delete(attachment.file_name)
                attachment.delete()
                existing.remove(attachment)

        if expense.receipt_image:
            if not any(a.file_name == expense.receipt_image for a in existing):
                pending.append(expense.receipt_image)
                logger.info("Migrating legacy receipt %s of expense %s", expense.receipt_image, expense.pk)
        expense.receipt_image = None

        for upload in new_files or []:
            if not upload or not getattr(upload, "size", 0):
                continue
            pending.append(storage.store(upload, getattr(upload, "name", None)))

        expense.save()
        ExpenseAttachment.objects.bulk_create(
            [ExpenseAttachment(expense=expense, file_name=file_name) for file_name in pending]
        )

    return Expense.objects.with_details().get(pk=expense.pk)


def update_expense_status(expense_id, status):
    with transaction.atomic():
        expense = _lock_expense(expense_id)
        previous = expense.status
        expense.status = status
        expense.save(update_fields=["status", "updated_at"])
    logger.info("Expense %s status %s -> %s", expense_id, previous, status)
    return expense


def add_comment(expense_id, user, message):
    """Record a reviewer comment; any comment puts the expense into QUERIES_RAISED."""
    with transaction.atomic():
        expense = _lock_expense(expense_id)
        comment = ExpenseComment.objects.create(expense=expense, user=user, message=message)
        if expense.status != ExpenseStatus.QUERIES_RAISED:
            logger.info("Expense %s status %s -> %s (comment)", expense_id, expense.status, ExpenseStatus.QUERIES_RAISED)
            expense.status = ExpenseStatus.QUERIES_RAISED
            expense.save(update_fields=["status", "updated_at"])
    return comment


def get_comments(expense_id):
    return ExpenseComment.objects.select_related("user").filter(expense_id=expense_id).order_by("created_at", "id")


def delete_expense(expense_id, storage=None):
    storage = _storage(storage)
    with transaction.atomic():
        expense = Expense.objects.prefetch_related("attachments").filter(pk=expense_id).first()
        if expense is None:
            return False
        if expense.receipt_image:
            storage.delete(expense.receipt_image)
        for attachment in expense.attachments.all():
            storage.delete(attachment.file_name)
        expense.delete()
    logger.info("Deleted expense %s", expense_id)
    return True


def delete_attachment(attachment_id, storage=None):
    storage = _storage(storage)
    with transaction.atomic():
        attachment = ExpenseAttachment.objects.select_related("expense").filter(pk=attachment_id).first()
        if attachment is None:
            return None
        storage.delete(attachment.file_name)
        expense = attachment.expense
        attachment.delete()
        if expense is not None:
            expense.save(update_fields=["updated_at"])
    return expense


def _ordering(sort_field, sort_direction):
    try:
        path = SORT_FIELDS[sort_field]
    except KeyError:
        raise ValueError(f"Unsupported sort field: {sort_field}") from None
    descending = str(sort_direction or "DESC").upper() != "ASC"
    prefix = "-" if descending else ""
    ordering = [f"{prefix}{path}"]
    if path != "id":
        ordering.append(f"{prefix}id")
    return ordering


def filter_expenses(
    user=None,
    statuses=None,
    keyword=None,
    start_date=None,
    end_date=None,
    category_id=None,
    sort_field="date",
    sort_direction="DESC",
):
    predicate = build_expense_filter(
        user=user,
        statuses=statuses,
        keyword=keyword,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
    )
    return Expense.objects.with_details().filter(predicate).order_by(*_ordering(sort_field, sort_direction))


def get_expenses(
    user=None,
    statuses=None,
    keyword=None,
    start_date=None,
    end_date=None,
    category_id=None,
    page=0,
    page_size=5,
    sort_field="date",
    sort_direction="DESC",
):
    """Zero-based ``page`` of the filtered expenses; a page past the end is empty."""
    queryset = filter_expenses(
        user=user,
        statuses=statuses,
        keyword=keyword,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
        sort_field=sort_field,
        sort_direction=sort_direction,
    )
    paginator = Paginator(queryset, page_size)
    try:
        return paginator.page(page + 1)
    except EmptyPage:
        return Page([], page + 1, paginator)


def _csv_description(value):
    return '"' + (value or "").replace('"', '""') + '"'


def _csv_cells(values):
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="").writerow(values)
    return buffer.getvalue()


def expense_csv_lines(expenses):
    yield CSV_HEADER + "\n"
    for expense in expenses:
        leading = [
            str(expense.id),
            expense.date.isoformat(),
            expense.category.name if expense.category_id else "",
            expense.sub_category.name if expense.sub_category_id else "",
            f"{expense.amount:.2f}",
            expense.status,
        ]
        row = [_csv_cells(leading), _csv_description(expense.description), _csv_cells([expense.user.username])]
        yield ",".join(row) + "\n"
