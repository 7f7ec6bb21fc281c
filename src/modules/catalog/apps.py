from django.apps import AppConfig


class CatalogConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.catalog"
    label = "catalog"

    def ready(self) -> None:
        from modules.catalog.services import (
            CategoryService,
            PriceHistoryService,
            ProductService,
        )
        from modules.core.sweep import sweep_registry

        sweep_registry.register(CategoryService)
        sweep_registry.register(ProductService)
        sweep_registry.register(PriceHistoryService)
