from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.accounts.models import UserRole
from apps.categories.models import Category, SubCategory

User = get_user_model()

DEFAULT_USERS = (
    ("admin", UserRole.ADMIN),
    ("manager", UserRole.MANAGER),
    ("accountant", UserRole.ACCOUNTANT),
    ("supervisor", UserRole.SUPERVISOR),
)

DEFAULT_CATEGORIES = {
    "Raw Materials": ("Seeds / Spores", "Compost"),
    "Utilities": ("Electricity",),
}


class Command(BaseCommand):
    help = "Create role groups, default users and the starter category taxonomy"

    def add_arguments(self, parser):
        parser.add_argument("--password", default="password", help="Password for the default users")

    @transaction.atomic
    def handle(self, *args, **options):
        for role in UserRole.values:
            group, created = Group.objects.get_or_create(name=role)
            action = "created" if created else "exists"
            self.stdout.write(self.style.SUCCESS(f"group {group.name}: {action}"))

        if User.objects.exists():
            self.stdout.write("users: skipped (already provisioned)")
        else:
            for username, role in DEFAULT_USERS:
                user = User.objects.create_user(username=username, password=options["password"], role=role)
                user.sync_role_group()
                self.stdout.write(self.style.SUCCESS(f"user {username}: created ({role})"))

        if Category.objects.exists():
            self.stdout.write("categories: skipped (already provisioned)")
            return

        for category_name, sub_names in DEFAULT_CATEGORIES.items():
            category = Category.objects.create(name=category_name)
            for sub_name in sub_names:
                SubCategory.objects.create(category=category, name=sub_name)
            self.stdout.write(self.style.SUCCESS(f"category {category_name}: created ({len(sub_names)} sub categories)"))
