# mr_core/api/urls.py
from __future__ import annotations

from django.urls import include, path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

urlpatterns = [
    # 🔐 Auth (JWT bearer tokens)
    path("auth/token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),

    # Medical records + audit ledger views share one prefix
    path("medical-records/", include(("mr_core.records.api.urls", "records"), namespace="records")),
    path("medical-records/", include(("mr_core.audit.api.urls", "audit"), namespace="audit")),
]
