from django.db.models import Q

KEYWORD_FIELDS = (
    "description__icontains",
    "batch_id__icontains",
    "category__name__icontains",
    "sub_category__name__icontains",
)


def keyword_filter(keyword):
    keyword = (keyword or "").strip()
    if not keyword:
        return Q()
    predicate = Q()
    for lookup in KEYWORD_FIELDS:
        predicate |= Q(**{lookup: keyword})
    return predicate


def build_expense_filter(user=None, statuses=None, keyword=None, start_date=None, end_date=None, category_id=None):
    """AND of the clauses whose argument is given; ``Q()`` matches everything.

    ``user=None`` is the unscoped ("show all") query.
    """
    predicate = Q()
    if user is not None:
        predicate &= Q(user=user)
    if statuses:
        predicate &= Q(status__in=list(statuses))
    if start_date is not None:
        predicate &= Q(date__gte=start_date)
    if end_date is not None:
        predicate &= Q(date__lte=end_date)
    if category_id is not None:
        predicate &= Q(category_id=category_id)
    predicate &= keyword_filter(keyword)
    return predicate
