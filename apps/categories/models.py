from django.db import models


def normalize_category_name(value):
    return " ".join(str(value or "").split())


class Category(models.Model):
    name = models.CharField(max_length=120, unique=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "categories"

    def save(self, *args, **kwargs):
        self.name = normalize_category_name(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return self.name


class SubCategory(models.Model):
    name = models.CharField(max_length=120)
    category = models.ForeignKey(Category, on_delete=models.CASCADE, related_name="sub_categories")

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "sub categories"
        constraints = [
            models.UniqueConstraint(fields=["category", "name"], name="subcategory_unique_per_category"),
        ]

    def save(self, *args, **kwargs):
        self.name = normalize_category_name(self.name)
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.category.name} / {self.name}"
