from django.apps import AppConfig


class NeedsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.needs'
    verbose_name = 'Needs & Offers'
