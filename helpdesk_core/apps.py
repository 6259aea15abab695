# helpdesk_core/apps.py

from django.apps import AppConfig


class HelpdeskCoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "helpdesk_core"
    verbose_name = "Helpdesk"
