from django.apps import AppConfig


class GeographyConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.geography"
    label = "geography"

    def ready(self) -> None:
        from modules.core.sweep import sweep_registry
        from modules.geography.services import RegionService, SettlementService

        sweep_registry.register(RegionService)
        sweep_registry.register(SettlementService)
