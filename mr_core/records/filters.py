# mr_core/records/filters.py
from __future__ import annotations

import django_filters
from django.db import connection
from django.db.models import Q

from mr_core.records.models import MedicalRecord


class RecordSearchFilter(django_filters.FilterSet):
    """
    Search over active records:
      ?query=      substring of title or description
      ?patient_id= owning patient
      ?tags=a,b    any of the tags
      ?date_from= / ?date_to=  creation date window (inclusive)
    """
    query = django_filters.CharFilter(method="filter_query")
    patient_id = django_filters.UUIDFilter(field_name="patient_id")
    tags = django_filters.CharFilter(method="filter_tags")
    date_from = django_filters.DateFilter(field_name="created_at", lookup_expr="date__gte")
    date_to = django_filters.DateFilter(field_name="created_at", lookup_expr="date__lte")

    class Meta:
        model = MedicalRecord
        fields = ["query", "patient_id", "tags", "date_from", "date_to"]

    def filter_query(self, queryset, name, value):
        value = (value or "").strip()
        if not value:
            return queryset
        return queryset.filter(Q(title__icontains=value) | Q(description__icontains=value))

    def filter_tags(self, queryset, name, value):
        wanted = [t.strip() for t in (value or "").split(",") if t.strip()]
        if not wanted:
            return queryset

        if connection.features.supports_json_field_contains:
            q = Q()
            for tag in wanted:
                q |= Q(tags__contains=[tag])
            return queryset.filter(q)

        # JSON containment unavailable (SQLite): match tag lists in Python
        wanted_set = set(wanted)
        ids = [
            pk
            for pk, tags in queryset.values_list("pk", "tags")
            if wanted_set.intersection(tags or [])
        ]
        return queryset.filter(pk__in=ids)
