from django.apps import AppConfig


class EdcConfig(AppConfig):
    name = "edc"
    verbose_name = "Electronic Data Capture"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        """Import signals when Django app is ready."""
        import edc.signals  # noqa: F401
