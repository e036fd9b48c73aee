from django.apps import AppConfig


class RecordsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "mr_core.records"

    def ready(self):
        # ensure event-bus subscribers register
        from mr_core.records import subscribers  # noqa: F401
