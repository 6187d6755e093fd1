from django.apps import AppConfig


class LogisticsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'logistics'
    verbose_name = 'Orders & Dispatch'

    def ready(self):
        # Register signals for broadcasts, dispatch and payouts
        import logistics.signals  # noqa: F401
