from django.apps import AppConfig  # type: ignore


class FinancesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.finances"
    label = "finances"
    services = None

    def ready(self) -> None:
        from .services import build_services, install

        install(build_services())
