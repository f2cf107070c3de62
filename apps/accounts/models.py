from django.contrib.auth.models import AbstractUser, Group
from django.db import models


class UserRole(models.TextChoices):
    ADMIN = "ADMIN", "Admin"
    MANAGER = "MANAGER", "Manager"
    ACCOUNTANT = "ACCOUNTANT", "Accountant"
    SUPERVISOR = "SUPERVISOR", "Supervisor"


class User(AbstractUser):
    role = models.CharField(max_length=20, choices=UserRole.choices, default=UserRole.MANAGER)

    def sync_role_group(self):
        """Keep exactly one role group, the one named after ``role``."""
        self.groups.remove(*Group.objects.filter(name__in=UserRole.values).exclude(name=self.role))
        group, _ = Group.objects.get_or_create(name=self.role)
        self.groups.add(group)
