from django.db import connection


def lock_rows(queryset, *, skip_locked: bool = False):
    """Apply `SELECT ... FOR UPDATE` when the backend supports it.

    Only the queryset's own table is locked when the backend supports
    `FOR UPDATE OF`, so `select_related` joins stay unlocked.
    """

    features = connection.features
    if not features.has_select_for_update:
        return queryset

    kwargs = {}
    if skip_locked and features.has_select_for_update_skip_locked:
        kwargs["skip_locked"] = True
    if features.has_select_for_update_of and queryset.query.select_related:
        kwargs["of"] = ("self",)
    return queryset.select_for_update(**kwargs)


def skip_locked_supported() -> bool:
    features = connection.features
    return features.has_select_for_update and features.has_select_for_update_skip_locked
