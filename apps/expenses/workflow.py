from apps.expenses.models import ExpenseStatus

EDITABLE_STATUSES = frozenset({ExpenseStatus.DRAFT, ExpenseStatus.QUERIES_RAISED})
TERMINAL_STATUSES = frozenset({ExpenseStatus.APPROVED, ExpenseStatus.REJECTED})

ALLOWED_TRANSITIONS = {
    ExpenseStatus.DRAFT: frozenset({ExpenseStatus.SUBMITTED}),
    ExpenseStatus.SUBMITTED: frozenset(
        {ExpenseStatus.APPROVED, ExpenseStatus.REJECTED, ExpenseStatus.QUERIES_RAISED}
    ),
    ExpenseStatus.QUERIES_RAISED: frozenset({ExpenseStatus.SUBMITTED}),
    ExpenseStatus.APPROVED: frozenset(),
    ExpenseStatus.REJECTED: frozenset(),
}


def is_editable(status):
    return status in EDITABLE_STATUSES


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())
