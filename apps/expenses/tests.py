import csv
import os
import shutil
import tempfile
from datetime import date, timedelta
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.categories.models import Category, SubCategory
from apps.expenses.filters import build_expense_filter
from apps.expenses.models import Expense, ExpenseAttachment, ExpenseComment, ExpenseStatus
from apps.expenses.services import (
    CSV_HEADER,
    ExpenseNotFound,
    add_comment,
    delete_attachment,
    delete_expense,
    expense_csv_lines,
    get_comments,
    get_expenses,
    save_expense,
    update_expense_status,
)
from apps.expenses.storage import ExpenseFileStorage, FileStorageError, InvalidFileName
from apps.expenses.workflow import can_transition, is_editable

User = get_user_model()


def make_upload(name="receipt.jpg", content=b"receipt-bytes"):
    return SimpleUploadedFile(name, content, content_type="image/jpeg")


class UploadDirMixin:
    def make_upload_dir(self):
        upload_dir = tempfile.mkdtemp(prefix="expense-test-")
        self.addCleanup(shutil.rmtree, upload_dir, ignore_errors=True)
        return upload_dir


class ExpenseFixturesMixin:
    def create_fixtures(self):
        self.alice = User.objects.create_user(username="alice", password="alice123", role="MANAGER")
        self.bob = User.objects.create_user(username="bob", password="bob123", role="MANAGER")
        self.accountant = User.objects.create_user(username="acc", password="acc123", role="ACCOUNTANT")
        self.travel = Category.objects.create(name="Travel")
        self.taxi = SubCategory.objects.create(name="Taxi", category=self.travel)
        self.food = Category.objects.create(name="Food")

    def make_expense(self, **overrides):
        values = {
            "description": "Team lunch",
            "amount": Decimal("25.00"),
            "date": date(2026, 3, 10),
            "status": ExpenseStatus.DRAFT,
            "user": self.alice,
            "category": self.food,
        }
        values.update(overrides)
        return Expense.objects.create(**values)


class FileStorageTests(UploadDirMixin, TestCase):
    def setUp(self):
        self.upload_dir = self.make_upload_dir()
        self.storage = ExpenseFileStorage(location=self.upload_dir)

    def test_store_generates_unique_key_and_writes_file(self):
        first = self.storage.store(b"abc", "receipt.jpg")
        second = self.storage.store(make_upload(), "receipt.jpg")

        self.assertNotEqual(first, second)
        self.assertTrue(first.endswith("_receipt.jpg"))
        self.assertTrue(os.path.exists(os.path.join(self.upload_dir, first)))
        with open(os.path.join(self.upload_dir, first), "rb") as handle:
            self.assertEqual(handle.read(), b"abc")

    def test_store_rejects_missing_and_traversal_names(self):
        for name in (None, "", "   ", "../etc/passwd", "nested/receipt.jpg", "..\\receipt.jpg"):
            with self.subTest(name=name):
                with self.assertRaises(InvalidFileName):
                    self.storage.store(b"abc", name)
        self.assertEqual(os.listdir(self.upload_dir), [])

    def test_store_wraps_io_failures(self):
        with mock.patch.object(self.storage._backend, "save", side_effect=OSError("disk full")):
            with self.assertRaises(FileStorageError):
                self.storage.store(b"abc", "receipt.jpg")

    def test_delete_is_idempotent(self):
        key = self.storage.store(b"abc", "receipt.jpg")
        self.storage.delete(key)
        self.storage.delete(key)
        self.storage.delete(None)
        self.assertFalse(self.storage.exists(key))

    def test_delete_failure_is_logged_not_raised(self):
        with mock.patch.object(self.storage._backend, "delete", side_effect=OSError("permission denied")):
            with self.assertLogs("apps.expenses.storage", level="WARNING") as logs:
                self.storage.delete("some-key.jpg")
        self.assertIn("some-key.jpg", logs.output[0])


class WorkflowTests(TestCase):
    def test_transition_table(self):
        self.assertTrue(can_transition(ExpenseStatus.DRAFT, ExpenseStatus.SUBMITTED))
        self.assertTrue(can_transition(ExpenseStatus.QUERIES_RAISED, ExpenseStatus.SUBMITTED))
        for target in (ExpenseStatus.APPROVED, ExpenseStatus.REJECTED, ExpenseStatus.QUERIES_RAISED):
            self.assertTrue(can_transition(ExpenseStatus.SUBMITTED, target))
        self.assertFalse(can_transition(ExpenseStatus.APPROVED, ExpenseStatus.DRAFT))
        self.assertFalse(can_transition(ExpenseStatus.REJECTED, ExpenseStatus.SUBMITTED))
        self.assertFalse(can_transition(ExpenseStatus.DRAFT, ExpenseStatus.APPROVED))

    def test_only_draft_and_queried_expenses_are_editable(self):
        self.assertTrue(is_editable(ExpenseStatus.DRAFT))
        self.assertTrue(is_editable(ExpenseStatus.QUERIES_RAISED))
        self.assertFalse(is_editable(ExpenseStatus.SUBMITTED))
        self.assertFalse(is_editable(ExpenseStatus.APPROVED))


class ExpenseFilterTests(ExpenseFixturesMixin, TestCase):
    def setUp(self):
        self.create_fixtures()

    def matching(self, **kwargs):
        return set(Expense.objects.filter(build_expense_filter(**kwargs)).values_list("id", flat=True))

    def test_keyword_and_status_filter(self):
        coffee = self.make_expense(description="Morning Coffee", status=ExpenseStatus.SUBMITTED)
        approved_coffee = self.make_expense(description="Coffee beans", status=ExpenseStatus.APPROVED)

        result = self.matching(user=None, statuses=[ExpenseStatus.SUBMITTED], keyword="coffee")

        self.assertIn(coffee.id, result)
        self.assertNotIn(approved_coffee.id, result)

    def test_no_criteria_matches_everything(self):
        self.make_expense()
        self.make_expense(user=self.bob)
        self.assertEqual(len(self.matching()), 2)

    def test_keyword_searches_batch_category_and_sub_category(self):
        by_batch = self.make_expense(description="Hotel", batch_id="TRIP-2026-03")
        by_category = self.make_expense(description="Flight", category=self.travel)
        by_sub_category = self.make_expense(description="Ride", category=self.travel, sub_category=self.taxi)
        unrelated = self.make_expense(description="Stationery")

        self.assertEqual(self.matching(keyword="trip-2026"), {by_batch.id})
        self.assertEqual(self.matching(keyword="TRAVEL"), {by_category.id, by_sub_category.id})
        self.assertEqual(self.matching(keyword=" taxi "), {by_sub_category.id})
        self.assertNotIn(unrelated.id, self.matching(keyword="ride"))

    def test_blank_keyword_is_ignored(self):
        self.make_expense()
        self.make_expense(user=self.bob)
        self.assertEqual(len(self.matching(keyword="   ")), 2)

    def test_user_date_range_and_category(self):
        early = self.make_expense(date=date(2026, 1, 1))
        inside = self.make_expense(date=date(2026, 2, 1), category=self.travel)
        edge = self.make_expense(date=date(2026, 2, 28))
        bobs = self.make_expense(date=date(2026, 2, 2), user=self.bob)

        in_february = self.matching(start_date=date(2026, 2, 1), end_date=date(2026, 2, 28))
        self.assertEqual(in_february, {inside.id, edge.id, bobs.id})
        self.assertNotIn(early.id, in_february)
        self.assertEqual(self.matching(user=self.bob), {bobs.id})
        self.assertEqual(self.matching(category_id=self.travel.id), {inside.id})


class ExpenseServiceTests(UploadDirMixin, ExpenseFixturesMixin, TestCase):
    def setUp(self):
        self.create_fixtures()
        self.storage = mock.Mock(spec=ExpenseFileStorage)
        self.storage.store.side_effect = lambda content, name: f"key_{name}"

    def test_legacy_receipt_is_migrated_once(self):
        expense = self.make_expense(receipt_image="old.jpg")

        saved = save_expense(expense, [], [], False, storage=self.storage)

        self.assertIsNone(saved.receipt_image)
        self.assertEqual([a.file_name for a in saved.attachments.all()], ["old.jpg"])
        expense.refresh_from_db()
        self.assertIsNone(expense.receipt_image)

        expense.receipt_image = "old.jpg"
        saved_again = save_expense(expense, storage=self.storage)
        self.assertEqual([a.file_name for a in saved_again.attachments.all()], ["old.jpg"])
        self.storage.delete.assert_not_called()

    def test_delete_primary_image_removes_file_without_migrating(self):
        expense = self.make_expense(receipt_image="primary.jpg")

        saved = save_expense(expense, delete_primary_image=True, storage=self.storage)

        self.storage.delete.assert_called_once_with("primary.jpg")
        self.assertIsNone(saved.receipt_image)
        self.assertEqual(saved.attachments.count(), 0)

    def test_delete_attachment_ids_only_touch_matches(self):
        expense = self.make_expense()
        first = ExpenseAttachment.objects.create(expense=expense, file_name="file1.jpg")
        second = ExpenseAttachment.objects.create(expense=expense, file_name="file2.jpg")
        foreign = ExpenseAttachment.objects.create(expense=self.make_expense(user=self.bob), file_name="bob.jpg")

        saved = save_expense(expense, delete_attachment_ids=[first.id, foreign.id, 99999], storage=self.storage)

        self.storage.delete.assert_called_once_with("file1.jpg")
        self.assertEqual([a.id for a in saved.attachments.all()], [second.id])
        self.assertFalse(ExpenseAttachment.objects.filter(id=first.id).exists())
        self.assertTrue(ExpenseAttachment.objects.filter(id=foreign.id).exists())

    def test_new_files_become_attachments_and_empty_files_are_skipped(self):
        expense = Expense(
            description="Conference",
            amount=Decimal("300.00"),
            user=self.alice,
            category=self.travel,
        )

        saved = save_expense(
            expense,
            [make_upload("a.jpg"), make_upload("empty.jpg", b""), make_upload("b.pdf")],
            storage=self.storage,
        )

        self.assertEqual(self.storage.store.call_count, 2)
        self.assertEqual([a.file_name for a in saved.attachments.all()], ["key_a.jpg", "key_b.pdf"])
        self.assertEqual(saved.date, timezone.localdate())
        self.assertEqual(saved.status, ExpenseStatus.DRAFT)

    def test_failed_upload_rolls_back_attachment_changes(self):
        expense = self.make_expense()
        kept = ExpenseAttachment.objects.create(expense=expense, file_name="kept.jpg")
        self.storage.store.side_effect = InvalidFileName("Invalid file name")

        with self.assertRaises(InvalidFileName):
            save_expense(expense, [make_upload()], delete_attachment_ids=[kept.id], storage=self.storage)

        self.assertTrue(ExpenseAttachment.objects.filter(id=kept.id).exists())

    def test_update_status_unknown_expense_raises_without_saving(self):
        with mock.patch.object(Expense, "save") as save_mock:
            with self.assertRaises(ExpenseNotFound):
                update_expense_status(12345, ExpenseStatus.REJECTED)
        save_mock.assert_not_called()

    def test_update_status_overwrites_status(self):
        expense = self.make_expense(status=ExpenseStatus.SUBMITTED)

        updated = update_expense_status(expense.id, ExpenseStatus.APPROVED)

        self.assertEqual(updated.status, ExpenseStatus.APPROVED)
        expense.refresh_from_db()
        self.assertEqual(expense.status, ExpenseStatus.APPROVED)

    def test_comment_on_approved_expense_raises_query(self):
        expense = self.make_expense(status=ExpenseStatus.APPROVED)

        comment = add_comment(expense.id, self.accountant, "msg")

        expense.refresh_from_db()
        self.assertEqual(expense.status, ExpenseStatus.QUERIES_RAISED)
        self.assertEqual(ExpenseComment.objects.filter(expense=expense).count(), 1)
        self.assertEqual(comment.user, self.accountant)
        self.assertIsNotNone(comment.created_at)

    def test_comment_on_queried_expense_keeps_status(self):
        expense = self.make_expense(status=ExpenseStatus.QUERIES_RAISED)

        add_comment(expense.id, self.accountant, "first")
        add_comment(expense.id, self.alice, "second")

        expense.refresh_from_db()
        self.assertEqual(expense.status, ExpenseStatus.QUERIES_RAISED)
        self.assertEqual([c.message for c in get_comments(expense.id)], ["first", "second"])

    def test_comment_on_unknown_expense_raises(self):
        with self.assertRaises(ExpenseNotFound):
            add_comment(12345, self.accountant, "msg")
        self.assertEqual(ExpenseComment.objects.count(), 0)

    def test_delete_missing_expense_is_a_noop(self):
        self.assertFalse(delete_expense(12345, storage=self.storage))
        self.storage.delete.assert_not_called()

    def test_delete_expense_removes_files_then_rows(self):
        expense = self.make_expense(receipt_image="legacy.jpg")
        ExpenseAttachment.objects.create(expense=expense, file_name="a.jpg")
        ExpenseAttachment.objects.create(expense=expense, file_name="b.jpg")
        ExpenseComment.objects.create(expense=expense, user=self.accountant, message="why?")

        self.assertTrue(delete_expense(expense.id, storage=self.storage))

        deleted = sorted(call.args[0] for call in self.storage.delete.call_args_list)
        self.assertEqual(deleted, ["a.jpg", "b.jpg", "legacy.jpg"])
        self.assertFalse(Expense.objects.filter(id=expense.id).exists())
        self.assertEqual(ExpenseAttachment.objects.count(), 0)
        self.assertEqual(ExpenseComment.objects.count(), 0)

    def test_delete_attachment(self):
        expense = self.make_expense()
        attachment = ExpenseAttachment.objects.create(expense=expense, file_name="a.jpg")

        parent = delete_attachment(attachment.id, storage=self.storage)

        self.storage.delete.assert_called_once_with("a.jpg")
        self.assertEqual(parent, expense)
        self.assertEqual(expense.attachments.count(), 0)

    def test_delete_missing_attachment_is_a_noop(self):
        self.assertIsNone(delete_attachment(12345, storage=self.storage))
        self.storage.delete.assert_not_called()

    def test_uploads_for_manager_are_found_by_filter(self):
        storage = ExpenseFileStorage(location=self.make_upload_dir())
        expense = Expense(description="Client visit", amount=Decimal("80.00"), user=self.alice, category=self.travel)
        save_expense(expense, [make_upload("one.jpg"), make_upload("two.jpg")], storage=storage)

        page = get_expenses(user=self.alice, statuses=[ExpenseStatus.DRAFT], page=0, page_size=10)

        self.assertEqual(page.paginator.count, 1)
        found = page.object_list[0]
        self.assertEqual(found.id, expense.id)
        self.assertEqual(len(found.attachments.all()), 2)
        for attachment in found.attachments.all():
            self.assertTrue(storage.exists(attachment.file_name))

    def test_get_expenses_pages_and_sorts(self):
        for amount in ("30.00", "10.00", "20.00"):
            self.make_expense(amount=Decimal(amount))

        first = get_expenses(page=0, page_size=2, sort_field="amount", sort_direction="asc")
        second = get_expenses(page=1, page_size=2, sort_field="amount", sort_direction="ASC")

        self.assertEqual([e.amount for e in first.object_list], [Decimal("10.00"), Decimal("20.00")])
        self.assertEqual([e.amount for e in second.object_list], [Decimal("30.00")])
        self.assertEqual(first.paginator.count, 3)
        self.assertEqual(first.paginator.num_pages, 2)
        self.assertTrue(first.has_next())
        self.assertFalse(second.has_next())

    def test_get_expenses_page_past_the_end_is_empty(self):
        self.make_expense()

        page = get_expenses(page=3, page_size=2)

        self.assertEqual(list(page.object_list), [])
        self.assertEqual(page.paginator.count, 1)
        self.assertFalse(page.has_next())

    def test_get_expenses_rejects_unknown_sort_field(self):
        with self.assertRaises(ValueError):
            get_expenses(sort_field="password")

    def test_csv_lines_quote_description(self):
        expense = self.make_expense(description='Dinner "team"', category=self.travel, sub_category=self.taxi)

        lines = list(expense_csv_lines([expense]))

        self.assertEqual(lines[0], CSV_HEADER + "\n")
        self.assertEqual(
            lines[1],
            f'{expense.id},2026-03-10,Travel,Taxi,25.00,DRAFT,"Dinner ""team""",alice\n',
        )

    def test_csv_lines_escape_commas_outside_description(self):
        lodging = Category.objects.create(name="Travel, Lodging")
        user = User.objects.create_user(username="a,b", password="x")
        expense = self.make_expense(description="x", amount=Decimal("1.00"), category=lodging, user=user)

        row = list(expense_csv_lines([expense]))[1]

        self.assertEqual(row, f'{expense.id},2026-03-10,"Travel, Lodging",,1.00,DRAFT,"x","a,b"\n')
        self.assertEqual(len(next(csv.reader([row]))), 8)


class ExpensesApiTests(UploadDirMixin, ExpenseFixturesMixin, APITestCase):
    def setUp(self):
        self.create_fixtures()
        self.supervisor = User.objects.create_user(username="sup", password="sup123", role="SUPERVISOR")
        self.admin = User.objects.create_user(username="admin_exp", password="admin123", role="ADMIN")
        settings_override = override_settings(EXPENSE_UPLOAD_DIR=self.make_upload_dir())
        settings_override.enable()
        self.addCleanup(settings_override.disable)

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def create_expense_via_api(self, **overrides):
        payload = {
            "description": "Taxi to airport",
            "amount": "45.50",
            "date": "2026-03-12",
            "category": self.travel.id,
            "sub_category": self.taxi.id,
            "payment_mode": "CARD",
            "batch_id": "TRIP-7",
            "receipt_files": [make_upload("r1.jpg"), make_upload("r2.jpg")],
        }
        payload.update(overrides)
        return self.client.post("/api/v1/expenses/", payload, format="multipart")

    def test_manager_creates_draft_with_attachments(self):
        self.auth_as("alice", "alice123")

        response = self.create_expense_via_api()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], ExpenseStatus.DRAFT)
        self.assertEqual(response.data["username"], "alice")
        self.assertEqual(len(response.data["attachments"]), 2)
        self.assertTrue(response.data["attachments"][0]["file_name"].endswith("_r1.jpg"))
        self.assertIsNone(response.data["receipt_image"])
        self.assertTrue(AuditLog.objects.filter(action="expenses.create", entity_id=str(response.data["id"])).exists())

    def test_create_validates_amount_and_sub_category(self):
        self.auth_as("alice", "alice123")
        other_sub = SubCategory.objects.create(name="Groceries", category=self.food)

        response = self.create_expense_via_api(amount="0.00", sub_category=other_sub.id)

        self.assertEqual(response.status_code, 400)
        self.assertIn("amount", response.data["fields"])
        self.assertEqual(Expense.objects.count(), 0)

    @override_settings(EXPENSE_UPLOAD_MAX_BYTES=10)
    def test_oversized_upload_is_rejected(self):
        self.auth_as("alice", "alice123")

        response = self.create_expense_via_api(receipt_files=[make_upload("big.jpg", b"x" * 11)])

        self.assertEqual(response.status_code, 413)
        self.assertEqual(response.data["code"], "file_too_large")
        self.assertEqual(Expense.objects.count(), 0)

    def test_manager_sees_only_own_expenses(self):
        mine = self.make_expense(user=self.alice)
        theirs = self.make_expense(user=self.bob)
        self.auth_as("alice", "alice123")

        listed = self.client.get("/api/v1/expenses/")
        hidden = self.client.get(f"/api/v1/expenses/{theirs.id}/")

        self.assertEqual(listed.status_code, 200)
        self.assertEqual([row["id"] for row in listed.data["results"]], [mine.id])
        self.assertEqual(hidden.status_code, 404)

    def test_list_validates_paging_parameters(self):
        self.auth_as("acc", "acc123")

        self.assertEqual(self.client.get("/api/v1/expenses/", {"page": -1}).status_code, 400)
        self.assertEqual(self.client.get("/api/v1/expenses/", {"size": 0}).status_code, 400)
        self.assertEqual(self.client.get("/api/v1/expenses/", {"sort_field": "password"}).status_code, 400)
        self.assertEqual(self.client.get("/api/v1/expenses/", {"status": "UNKNOWN"}).status_code, 400)

    def test_reviewer_list_hides_drafts_by_default(self):
        draft = self.make_expense(user=self.bob)
        submitted = self.make_expense(user=self.bob, status=ExpenseStatus.SUBMITTED)
        self.auth_as("acc", "acc123")

        default = self.client.get("/api/v1/expenses/")
        drafts = self.client.get("/api/v1/expenses/", {"status": "DRAFT"})

        self.assertEqual([row["id"] for row in default.data["results"]], [submitted.id])
        self.assertEqual([row["id"] for row in drafts.data["results"]], [draft.id])

    def test_list_filters_by_status_and_search(self):
        coffee = self.make_expense(description="Morning Coffee", status=ExpenseStatus.SUBMITTED)
        self.make_expense(description="Coffee again", status=ExpenseStatus.APPROVED, user=self.bob)
        self.make_expense(description="Lunch", status=ExpenseStatus.SUBMITTED)
        self.auth_as("acc", "acc123")

        response = self.client.get("/api/v1/expenses/", {"status": "SUBMITTED", "search": "coffee"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["id"], coffee.id)

    def test_full_review_cycle(self):
        self.auth_as("alice", "alice123")
        expense_id = self.create_expense_via_api().data["id"]

        submitted = self.client.post(f"/api/v1/expenses/{expense_id}/submit/")
        self.assertEqual(submitted.status_code, 200)
        self.assertEqual(submitted.data["status"], ExpenseStatus.SUBMITTED)
        self.assertEqual(self.client.post(f"/api/v1/expenses/{expense_id}/submit/").status_code, 400)
        self.assertEqual(
            self.client.patch(f"/api/v1/expenses/{expense_id}/", {"amount": "50.00"}, format="json").status_code,
            400,
        )
        self.assertEqual(self.client.post(f"/api/v1/expenses/{expense_id}/approve/").status_code, 403)

        self.auth_as("acc", "acc123")
        missing_message = self.client.post(f"/api/v1/expenses/{expense_id}/query/", {}, format="json")
        self.assertEqual(missing_message.status_code, 400)
        queried = self.client.post(
            f"/api/v1/expenses/{expense_id}/query/", {"message": "Missing the toll receipt"}, format="json"
        )
        self.assertEqual(queried.status_code, 200)
        self.assertEqual(queried.data["status"], ExpenseStatus.QUERIES_RAISED)
        self.assertEqual(queried.data["comments"][0]["message"], "Missing the toll receipt")

        self.auth_as("alice", "alice123")
        edited = self.client.patch(f"/api/v1/expenses/{expense_id}/", {"amount": "50.00"}, format="json")
        self.assertEqual(edited.status_code, 200)
        self.assertEqual(edited.data["amount"], "50.00")
        self.assertEqual(self.client.post(f"/api/v1/expenses/{expense_id}/submit/").status_code, 200)

        self.auth_as("sup", "sup123")
        approved = self.client.post(f"/api/v1/expenses/{expense_id}/approve/")
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.data["status"], ExpenseStatus.APPROVED)
        self.assertEqual(self.client.post(f"/api/v1/expenses/{expense_id}/reject/").status_code, 400)

        history = self.client.get(f"/api/v1/expenses/{expense_id}/history/")
        self.assertEqual(
            [entry["action"] for entry in history.data],
            [
                "expenses.create",
                "expenses.submit",
                "expenses.query",
                "expenses.update",
                "expenses.submit",
                "expenses.approve",
            ],
        )

    def test_reject_with_message_records_comment(self):
        expense = self.make_expense(status=ExpenseStatus.SUBMITTED)
        self.auth_as("acc", "acc123")

        response = self.client.post(f"/api/v1/expenses/{expense.id}/reject/", {"message": "Personal expense"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], ExpenseStatus.REJECTED)
        comments = self.client.get(f"/api/v1/expenses/{expense.id}/comments/")
        self.assertEqual([c["message"] for c in comments.data], ["Personal expense"])

    def test_edit_removes_selected_attachments(self):
        self.auth_as("alice", "alice123")
        created = self.create_expense_via_api().data
        first, second = created["attachments"]

        response = self.client.patch(
            f"/api/v1/expenses/{created['id']}/",
            {"delete_attachment_ids": [first["id"]]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual([a["id"] for a in response.data["attachments"]], [second["id"]])
        self.assertFalse(ExpenseFileStorage().exists(first["file_name"]))
        self.assertTrue(ExpenseFileStorage().exists(second["file_name"]))

    def test_attachment_endpoint_deletes_and_is_idempotent(self):
        self.auth_as("alice", "alice123")
        created = self.create_expense_via_api().data
        attachment_id = created["attachments"][0]["id"]

        first = self.client.delete(f"/api/v1/expense-attachments/{attachment_id}/")
        again = self.client.delete(f"/api/v1/expense-attachments/{attachment_id}/")

        self.assertEqual(first.status_code, 204)
        self.assertEqual(again.status_code, 204)
        self.assertEqual(ExpenseAttachment.objects.filter(expense_id=created["id"]).count(), 1)

    def test_other_manager_cannot_delete_attachment(self):
        expense = self.make_expense(user=self.bob)
        attachment = ExpenseAttachment.objects.create(expense=expense, file_name="bob.jpg")
        self.auth_as("alice", "alice123")

        response = self.client.delete(f"/api/v1/expense-attachments/{attachment.id}/")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(ExpenseAttachment.objects.filter(id=attachment.id).exists())

    def test_manager_deletes_draft_but_not_submitted(self):
        draft = self.make_expense()
        submitted = self.make_expense(status=ExpenseStatus.SUBMITTED)
        self.auth_as("alice", "alice123")

        self.assertEqual(self.client.delete(f"/api/v1/expenses/{draft.id}/").status_code, 204)
        self.assertEqual(self.client.delete(f"/api/v1/expenses/{submitted.id}/").status_code, 400)
        self.assertFalse(Expense.objects.filter(id=draft.id).exists())
        self.assertTrue(AuditLog.objects.filter(action="expenses.delete", entity_id=str(draft.id)).exists())

    def test_admin_has_no_expense_access(self):
        self.auth_as("admin_exp", "admin123")
        self.assertEqual(self.client.get("/api/v1/expenses/").status_code, 403)
        self.assertEqual(self.create_expense_via_api().status_code, 403)

    def test_manager_dashboard_sections(self):
        self.make_expense(status=ExpenseStatus.DRAFT)
        self.make_expense(status=ExpenseStatus.QUERIES_RAISED)
        self.make_expense(status=ExpenseStatus.SUBMITTED)
        self.make_expense(status=ExpenseStatus.SUBMITTED, user=self.bob)
        self.auth_as("alice", "alice123")

        response = self.client.get("/api/v1/expenses/dashboard/")

        self.assertEqual(response.status_code, 200)
        sections = response.data["sections"]
        self.assertEqual(set(sections), {"my_drafts", "pending", "approved", "returned", "rejected"})
        self.assertEqual(sections["my_drafts"]["count"], 2)
        self.assertEqual(sections["pending"]["count"], 1)
        self.assertEqual(sections["returned"]["count"], 1)
        self.assertEqual(sections["my_drafts"]["page_size"], 5)

    def test_accountant_dashboard_spans_all_users(self):
        self.make_expense(status=ExpenseStatus.SUBMITTED)
        self.make_expense(status=ExpenseStatus.SUBMITTED, user=self.bob)
        self.make_expense(status=ExpenseStatus.DRAFT, user=self.bob)
        self.auth_as("acc", "acc123")

        response = self.client.get("/api/v1/expenses/dashboard/", {"submitted_page": 0})

        self.assertEqual(set(response.data["sections"]), {"submitted", "approved", "rejected"})
        self.assertEqual(response.data["sections"]["submitted"]["count"], 2)
        self.assertEqual(self.client.get("/api/v1/expenses/dashboard/", {"submitted_page": -1}).status_code, 400)

    def test_export_csv(self):
        self.make_expense(description='Cab "late night"', status=ExpenseStatus.SUBMITTED, date=date(2026, 3, 1))
        self.make_expense(description="Hotel", status=ExpenseStatus.SUBMITTED, user=self.bob, date=date(2026, 3, 2))
        self.make_expense(description="Old", status=ExpenseStatus.SUBMITTED, date=date(2026, 3, 1) - timedelta(days=60))
        self.auth_as("acc", "acc123")

        response = self.client.get(
            "/api/v1/expenses/export/",
            {"status": "SUBMITTED", "start_date": "2026-02-01", "sort_field": "date", "sort_dir": "ASC"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = b"".join(response.streaming_content).decode().splitlines()
        self.assertEqual(lines[0], CSV_HEADER)
        self.assertEqual(len(lines), 3)
        self.assertIn('"Cab ""late night"""', lines[1])
        self.assertTrue(lines[2].endswith(",bob"))

    def test_manager_export_is_scoped_to_own_expenses(self):
        self.make_expense(description="Mine")
        self.make_expense(description="Theirs", user=self.bob)
        self.auth_as("alice", "alice123")

        response = self.client.get("/api/v1/expenses/export/")

        lines = b"".join(response.streaming_content).decode().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertTrue(lines[1].endswith(",alice"))
