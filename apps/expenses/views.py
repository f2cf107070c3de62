from django.conf import settings
from django.http import StreamingHttpResponse
from rest_framework import serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.audit.services import audit_trail, record_audit
from apps.common.exceptions import error_response_body
from apps.common.permissions import RolePermission, has_capability, resolve_role
from apps.expenses.dashboard import DASHBOARD_SECTIONS, build_dashboard
from apps.expenses.models import Expense, ExpenseAttachment, ExpenseStatus
from apps.expenses.serializers import (
    ExpenseCommentSerializer,
    ExpenseQuerySerializer,
    ExpenseSerializer,
    ReviewMessageSerializer,
)
from apps.expenses.services import (
    ExpenseNotFound,
    add_comment,
    delete_attachment,
    delete_expense,
    expense_csv_lines,
    filter_expenses,
    find_expense,
    get_comments,
    get_expenses,
    save_expense,
    update_expense_status,
)
from apps.expenses.storage import FileStorageError
from apps.expenses.workflow import can_transition, is_editable

REVIEWER_DEFAULT_STATUSES = [value for value in ExpenseStatus.values if value != ExpenseStatus.DRAFT]


def _snapshot(expense):
    return {
        "description": expense.description,
        "amount": str(expense.amount),
        "date": str(expense.date),
        "status": expense.status,
        "category_id": expense.category_id,
        "sub_category_id": expense.sub_category_id,
        "attachments": [attachment.file_name for attachment in expense.attachments.all()],
    }


def _page_body(page, serializer_class, context):
    return {
        "count": page.paginator.count,
        "page": page.number - 1,
        "page_size": page.paginator.per_page,
        "num_pages": page.paginator.num_pages,
        "results": serializer_class(page.object_list, many=True, context=context).data,
    }


class ExpenseViewSet(viewsets.ModelViewSet):
    queryset = Expense.objects.with_details()
    serializer_class = ExpenseSerializer
    permission_classes = [RolePermission]
    lookup_value_regex = r"\d+"
    capability_map = {
        "list": ["expenses.view.own"],
        "retrieve": ["expenses.view.own"],
        "comments": ["expenses.view.own"],
        "history": ["expenses.view.own"],
        "dashboard": ["expenses.view.own"],
        "export": ["expenses.export"],
        "create": ["expenses.author"],
        "update": ["expenses.author"],
        "partial_update": ["expenses.author"],
        "destroy": ["expenses.author"],
        "submit": ["expenses.author"],
        "approve": ["expenses.review"],
        "reject": ["expenses.review"],
        "query": ["expenses.review"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        if not has_capability(self.request.user, "expenses.view"):
            queryset = queryset.filter(user=self.request.user)
        return queryset

    def _scope_user(self):
        return None if has_capability(self.request.user, "expenses.view") else self.request.user

    def _statuses(self, query):
        statuses = query.validated_data["status"]
        # Unscoped listings hide drafts unless asked for explicitly.
        if not statuses and self._scope_user() is None:
            return REVIEWER_DEFAULT_STATUSES
        return statuses

    def _author_denied(self, expense):
        if expense.user_id != self.request.user.id:
            return Response(
                error_response_body("forbidden", "Only the owner can change this expense."),
                status=status.HTTP_403_FORBIDDEN,
            )
        if not is_editable(expense.status):
            return Response(
                error_response_body("invalid_state", f"Expenses in status {expense.status} cannot be changed."),
                status=status.HTTP_400_BAD_REQUEST,
            )
        return None

    @staticmethod
    def _invalid_transition(expense, target):
        if can_transition(expense.status, target):
            return None
        return Response(
            error_response_body("invalid_state", f"Cannot move expense from {expense.status} to {target}."),
            status=status.HTTP_400_BAD_REQUEST,
        )

    @staticmethod
    def _not_found(exc):
        return Response(error_response_body("not_found", str(exc)), status=status.HTTP_404_NOT_FOUND)

    def _save(self, serializer, instance=None):
        expense, changes = serializer.apply(instance)
        try:
            return save_expense(expense, **changes), None
        except FileStorageError as exc:
            return None, Response(
                error_response_body("invalid_file", str(exc), {"receipt_files": [str(exc)]}),
                status=status.HTTP_400_BAD_REQUEST,
            )

    def list(self, request, *args, **kwargs):
        query = ExpenseQuerySerializer.from_query_params(request.query_params)
        page = get_expenses(
            user=self._scope_user(),
            statuses=self._statuses(query),
            page=query.validated_data["page"],
            page_size=query.validated_data["size"] or settings.EXPENSE_DEFAULT_PAGE_SIZE,
            **query.filter_kwargs(),
        )
        return Response(_page_body(page, ExpenseSerializer, self.get_serializer_context()))

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        draft = Expense(user=request.user, status=ExpenseStatus.DRAFT)
        expense, error = self._save(serializer, draft)
        if error is not None:
            return error
        record_audit(
            actor=request.user,
            action="expenses.create",
            entity_type="expense",
            entity_id=expense.id,
            payload=_snapshot(expense),
        )
        return Response(self.get_serializer(expense).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        expense = self.get_object()
        denied = self._author_denied(expense)
        if denied is not None:
            return denied
        before = _snapshot(expense)
        serializer = self.get_serializer(expense, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        expense, error = self._save(serializer, expense)
        if error is not None:
            return error
        record_audit(
            actor=request.user,
            action="expenses.update",
            entity_type="expense",
            entity_id=expense.id,
            payload={"before": before, "after": _snapshot(expense)},
        )
        return Response(self.get_serializer(expense).data)

    def destroy(self, request, *args, **kwargs):
        expense = self.get_object()
        denied = self._author_denied(expense)
        if denied is not None:
            return denied
        expense_id, snapshot = expense.id, _snapshot(expense)
        delete_expense(expense_id)
        record_audit(
            actor=request.user,
            action="expenses.delete",
            entity_type="expense",
            entity_id=expense_id,
            payload=snapshot,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    def _transition(self, request, expense, target, action_name, payload=None):
        try:
            update_expense_status(expense.id, target)
        except ExpenseNotFound as exc:
            return self._not_found(exc)
        record_audit(
            actor=request.user,
            action=action_name,
            entity_type="expense",
            entity_id=expense.id,
            payload={"from": expense.status, "to": target, **(payload or {})},
        )
        return Response(self.get_serializer(find_expense(expense.id)).data)

    @action(detail=True, methods=["post"])
    def submit(self, request, pk=None):
        expense = self.get_object()
        if expense.user_id != request.user.id:
            return Response(
                error_response_body("forbidden", "Only the owner can submit this expense."),
                status=status.HTTP_403_FORBIDDEN,
            )
        invalid = self._invalid_transition(expense, ExpenseStatus.SUBMITTED)
        if invalid is not None:
            return invalid
        return self._transition(request, expense, ExpenseStatus.SUBMITTED, "expenses.submit")

    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        expense = self.get_object()
        invalid = self._invalid_transition(expense, ExpenseStatus.APPROVED)
        if invalid is not None:
            return invalid
        return self._transition(request, expense, ExpenseStatus.APPROVED, "expenses.approve")

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        expense = self.get_object()
        invalid = self._invalid_transition(expense, ExpenseStatus.REJECTED)
        if invalid is not None:
            return invalid
        serializer = ReviewMessageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = serializer.validated_data["message"]
        if message:
            try:
                add_comment(expense.id, request.user, message)
            except ExpenseNotFound as exc:
                return self._not_found(exc)
        return self._transition(request, expense, ExpenseStatus.REJECTED, "expenses.reject", {"message": message})

    @action(detail=True, methods=["post"])
    def query(self, request, pk=None):
        expense = self.get_object()
        invalid = self._invalid_transition(expense, ExpenseStatus.QUERIES_RAISED)
        if invalid is not None:
            return invalid
        serializer = ReviewMessageSerializer(data=request.data, message_required=True)
        serializer.is_valid(raise_exception=True)
        message = serializer.validated_data["message"]
        try:
            comment = add_comment(expense.id, request.user, message)
        except ExpenseNotFound as exc:
            return self._not_found(exc)
        record_audit(
            actor=request.user,
            action="expenses.query",
            entity_type="expense",
            entity_id=expense.id,
            payload={"from": expense.status, "to": ExpenseStatus.QUERIES_RAISED, "comment_id": comment.id},
        )
        return Response(self.get_serializer(find_expense(expense.id)).data)

    @action(detail=True, methods=["get"])
    def comments(self, request, pk=None):
        expense = self.get_object()
        return Response(ExpenseCommentSerializer(get_comments(expense.id), many=True).data)

    @action(detail=True, methods=["get"])
    def history(self, request, pk=None):
        expense = self.get_object()
        entries = audit_trail(entity_type="expense", entity_id=expense.id)
        return Response(
            [
                {
                    "action": entry.action,
                    "actor": entry.actor.username if entry.actor else None,
                    "payload": entry.payload,
                    "created_at": entry.created_at,
                }
                for entry in entries
            ]
        )

    @action(detail=False, methods=["get"])
    def dashboard(self, request):
        query = ExpenseQuerySerializer.from_query_params(request.query_params)
        role = resolve_role(request.user)
        pages = {}
        for section in DASHBOARD_SECTIONS.get(role, ()):
            raw = request.query_params.get(f"{section.name}_page", "0")
            try:
                pages[section.name] = int(raw)
            except ValueError:
                pages[section.name] = -1
            if pages[section.name] < 0:
                raise serializers.ValidationError({f"{section.name}_page": "page must be a non-negative integer"})
        page_size = query.validated_data["size"] or settings.EXPENSE_DASHBOARD_PAGE_SIZE
        sections = build_dashboard(request.user, role, query.filter_kwargs(), pages, page_size)
        context = self.get_serializer_context()
        return Response(
            {
                "role": role,
                "sections": {name: _page_body(page, ExpenseSerializer, context) for name, page in sections.items()},
            }
        )

    @action(detail=False, methods=["get"])
    def export(self, request):
        query = ExpenseQuerySerializer.from_query_params(request.query_params)
        expenses = filter_expenses(
            user=self._scope_user(),
            statuses=self._statuses(query),
            **query.filter_kwargs(),
        )
        response = StreamingHttpResponse(expense_csv_lines(expenses.iterator(chunk_size=500)), content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="expenses.csv"'
        return response


class ExpenseAttachmentViewSet(viewsets.GenericViewSet):
    queryset = ExpenseAttachment.objects.select_related("expense")
    permission_classes = [RolePermission]
    lookup_value_regex = r"\d+"
    capability_map = {"destroy": ["expenses.author"]}

    def destroy(self, request, pk=None):
        attachment = self.get_queryset().filter(pk=pk).first()
        if attachment is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        expense = attachment.expense
        if expense.user_id != request.user.id:
            return Response(
                error_response_body("forbidden", "Only the owner can change this expense."),
                status=status.HTTP_403_FORBIDDEN,
            )
        if not is_editable(expense.status):
            return Response(
                error_response_body("invalid_state", f"Expenses in status {expense.status} cannot be changed."),
                status=status.HTTP_400_BAD_REQUEST,
            )
        file_name = attachment.file_name
        delete_attachment(attachment.id)
        record_audit(
            actor=request.user,
            action="expenses.attachment.delete",
            entity_type="expense",
            entity_id=expense.id,
            payload={"attachment_id": int(pk), "file_name": file_name},
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
