from datetime import date
from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.categories.models import Category, SubCategory
from apps.expenses.models import Expense

User = get_user_model()


class CategoriesApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin_cat", password="admin123", role="ADMIN")
        self.manager = User.objects.create_user(username="manager_cat", password="manager123", role="MANAGER")
        self.category = Category.objects.create(name="Travel")
        self.sub_category = SubCategory.objects.create(name="Taxi", category=self.category)

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_manager_can_read_but_not_write(self):
        self.auth_as("manager_cat", "manager123")

        listed = self.client.get("/api/v1/categories/")
        created = self.client.post("/api/v1/categories/", {"name": "Food"}, format="json")

        self.assertEqual(listed.status_code, 200)
        self.assertEqual(listed.data["results"][0]["sub_categories"][0]["name"], "Taxi")
        self.assertEqual(created.status_code, 403)

    def test_admin_creates_category_with_normalized_name(self):
        self.auth_as("admin_cat", "admin123")

        response = self.client.post("/api/v1/categories/", {"name": "  Office   Supplies "}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["name"], "Office Supplies")
        self.assertTrue(
            AuditLog.objects.filter(action="categories.category.create", entity_id=str(response.data["id"])).exists()
        )

    def test_duplicate_names_are_rejected(self):
        self.auth_as("admin_cat", "admin123")

        category = self.client.post("/api/v1/categories/", {"name": "travel"}, format="json")
        sub_category = self.client.post(
            "/api/v1/subcategories/",
            {"name": "TAXI", "category": self.category.id},
            format="json",
        )

        self.assertEqual(category.status_code, 400)
        self.assertIn("name", category.data["fields"])
        self.assertEqual(sub_category.status_code, 400)
        self.assertIn("name", sub_category.data["fields"])

    def test_same_sub_category_name_under_another_category(self):
        other = Category.objects.create(name="Local")
        self.auth_as("admin_cat", "admin123")

        response = self.client.post("/api/v1/subcategories/", {"name": "Taxi", "category": other.id}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["category_name"], "Local")

    def test_sub_categories_filter_by_category(self):
        other = Category.objects.create(name="Utilities")
        SubCategory.objects.create(name="Electricity", category=other)
        self.auth_as("manager_cat", "manager123")

        response = self.client.get("/api/v1/subcategories/", {"category": other.id})

        self.assertEqual([row["name"] for row in response.data["results"]], ["Electricity"])

    def test_sub_categories_reject_non_numeric_category(self):
        self.auth_as("manager_cat", "manager123")

        response = self.client.get("/api/v1/subcategories/", {"category": "abc"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("category", response.data["fields"])

    def test_category_in_use_cannot_be_deleted(self):
        Expense.objects.create(
            description="Cab",
            amount=Decimal("12.00"),
            date=date(2026, 3, 1),
            user=self.manager,
            category=self.category,
            sub_category=self.sub_category,
        )
        self.auth_as("admin_cat", "admin123")

        category = self.client.delete(f"/api/v1/categories/{self.category.id}/")
        sub_category = self.client.delete(f"/api/v1/subcategories/{self.sub_category.id}/")

        self.assertEqual(category.status_code, 400)
        self.assertEqual(category.data["code"], "category_in_use")
        self.assertEqual(sub_category.status_code, 400)
        self.assertEqual(sub_category.data["code"], "subcategory_in_use")

    def test_unused_category_is_deleted_with_sub_categories(self):
        self.auth_as("admin_cat", "admin123")

        response = self.client.delete(f"/api/v1/categories/{self.category.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(SubCategory.objects.filter(id=self.sub_category.id).exists())
