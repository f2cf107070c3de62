from io import StringIO

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management import call_command
from django.test import TestCase
from rest_framework.test import APITestCase

from apps.accounts.models import UserRole
from apps.categories.models import Category
from apps.common.permissions import has_capability, resolve_role

User = get_user_model()


class RoleResolutionTests(TestCase):
    def test_role_field_is_used_without_groups(self):
        user = User.objects.create_user(username="acc_role", password="x", role=UserRole.ACCOUNTANT)

        self.assertEqual(resolve_role(user), UserRole.ACCOUNTANT)
        self.assertTrue(has_capability(user, "expenses.review"))
        self.assertFalse(has_capability(user, "expenses.author"))

    def test_group_membership_takes_precedence(self):
        user = User.objects.create_user(username="promoted", password="x", role=UserRole.MANAGER)
        user.groups.add(Group.objects.create(name=UserRole.SUPERVISOR))

        self.assertEqual(resolve_role(user), UserRole.SUPERVISOR)
        self.assertTrue(has_capability(user, "expenses.review"))
        self.assertTrue(has_capability(user, "expenses.author"))

    def test_admin_cannot_touch_expenses(self):
        user = User.objects.create_user(username="admin_role", password="x", role=UserRole.ADMIN)

        self.assertTrue(has_capability(user, "users.manage"))
        self.assertFalse(has_capability(user, "expenses.view.own"))


class SeedInitialDataTests(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_initial_data", password="seed-pass", stdout=StringIO())
        call_command("seed_initial_data", password="seed-pass", stdout=StringIO())

        self.assertEqual(
            set(User.objects.values_list("username", flat=True)),
            {"admin", "manager", "accountant", "supervisor"},
        )
        self.assertEqual(Group.objects.count(), len(UserRole.values))
        supervisor = User.objects.get(username="supervisor")
        self.assertTrue(supervisor.check_password("seed-pass"))
        self.assertEqual(resolve_role(supervisor), UserRole.SUPERVISOR)
        raw_materials = Category.objects.get(name="Raw Materials")
        self.assertEqual(
            sorted(raw_materials.sub_categories.values_list("name", flat=True)),
            ["Compost", "Seeds / Spores"],
        )
        self.assertEqual(Category.objects.count(), 2)


class RoleChangeApiTests(APITestCase):
    def setUp(self):
        call_command("seed_initial_data", password="seed-pass", stdout=StringIO())
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": "admin", "password": "seed-pass"},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_role_change_replaces_role_group(self):
        manager = User.objects.get(username="manager")

        response = self.client.patch(f"/api/v1/users/{manager.id}/", {"role": UserRole.ACCOUNTANT}, format="json")

        self.assertEqual(response.status_code, 200)
        manager.refresh_from_db()
        self.assertEqual(resolve_role(manager), UserRole.ACCOUNTANT)
        self.assertEqual(list(manager.groups.values_list("name", flat=True)), [UserRole.ACCOUNTANT])
        self.assertTrue(has_capability(manager, "expenses.review"))
        self.assertFalse(has_capability(manager, "expenses.author"))

    def test_created_user_joins_role_group(self):
        response = self.client.post(
            "/api/v1/users/",
            {"username": "sup2", "password": "s3cret-pass", "role": UserRole.SUPERVISOR},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = User.objects.get(username="sup2")
        self.assertEqual(list(created.groups.values_list("name", flat=True)), [UserRole.SUPERVISOR])


class UsersApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="root", password="root123", role=UserRole.ADMIN)
        self.manager = User.objects.create_user(username="mgr", password="mgr123", role=UserRole.MANAGER)

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_only_admin_manages_users(self):
        self.auth_as("mgr", "mgr123")
        self.assertEqual(self.client.get("/api/v1/users/").status_code, 403)

        self.auth_as("root", "root123")
        response = self.client.get("/api/v1/users/", {"role": "manager"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["username"] for row in response.data["results"]], ["mgr"])

    def test_admin_creates_user_with_hashed_password(self):
        self.auth_as("root", "root123")

        response = self.client.post(
            "/api/v1/users/",
            {"username": "newacc", "password": "s3cret-pass", "role": UserRole.ACCOUNTANT},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertNotIn("password", response.data)
        created = User.objects.get(username="newacc")
        self.assertTrue(created.check_password("s3cret-pass"))
        self.assertEqual(created.role, UserRole.ACCOUNTANT)

    def test_password_is_required_on_create(self):
        self.auth_as("root", "root123")

        response = self.client.post("/api/v1/users/", {"username": "nopass"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("password", response.data["fields"])

    def test_admin_cannot_delete_self(self):
        self.auth_as("root", "root123")

        response = self.client.delete(f"/api/v1/users/{self.admin.id}/")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(User.objects.filter(id=self.admin.id).exists())
