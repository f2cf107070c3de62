from collections import namedtuple

from apps.accounts.models import UserRole
from apps.expenses.models import ExpenseStatus
from apps.expenses.services import get_expenses

DashboardSection = namedtuple("DashboardSection", ["name", "statuses", "own_only"])

_MY_DRAFTS = DashboardSection("my_drafts", (ExpenseStatus.DRAFT, ExpenseStatus.QUERIES_RAISED), True)
_REVIEW_SECTIONS = (
    DashboardSection("submitted", (ExpenseStatus.SUBMITTED,), False),
    DashboardSection("approved", (ExpenseStatus.APPROVED,), False),
    DashboardSection("rejected", (ExpenseStatus.REJECTED,), False),
)

DASHBOARD_SECTIONS = {
    UserRole.ADMIN: (),
    UserRole.MANAGER: (
        _MY_DRAFTS,
        DashboardSection("pending", (ExpenseStatus.SUBMITTED,), True),
        DashboardSection("approved", (ExpenseStatus.APPROVED,), True),
        DashboardSection("returned", (ExpenseStatus.QUERIES_RAISED,), True),
        DashboardSection("rejected", (ExpenseStatus.REJECTED,), True),
    ),
    UserRole.ACCOUNTANT: _REVIEW_SECTIONS,
    UserRole.SUPERVISOR: (_MY_DRAFTS,) + _REVIEW_SECTIONS,
}


def build_dashboard(user, role, filters, pages, page_size):
    """One independently paged expense list per dashboard section of ``role``.

    ``pages`` maps section name to a zero-based page number; ``filters`` are
    shared keyword arguments for ``get_expenses``.
    """
    sections = {}
    for section in DASHBOARD_SECTIONS.get(role, ()):
        sections[section.name] = get_expenses(
            user=user if section.own_only else None,
            statuses=list(section.statuses),
            page=pages.get(section.name, 0),
            page_size=page_size,
            **filters,
        )
    return sections
