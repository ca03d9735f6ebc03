from django.apps import AppConfig


class BloodbankConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "bloodbank"
    verbose_name = "Blood requests"
