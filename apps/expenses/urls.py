from rest_framework.routers import DefaultRouter

from apps.expenses.views import ExpenseAttachmentViewSet, ExpenseViewSet

router = DefaultRouter()
router.register("expenses", ExpenseViewSet, basename="expense")
router.register("expense-attachments", ExpenseAttachmentViewSet, basename="expense-attachment")

urlpatterns = router.urls
