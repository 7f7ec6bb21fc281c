from django.apps import AppConfig


class InvoicingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.invoicing"
    label = "invoicing"

    def ready(self) -> None:
        from modules.core.sweep import sweep_registry
        from modules.invoicing.services import InvoiceItemService, InvoiceService

        sweep_registry.register(InvoiceService)
        sweep_registry.register(InvoiceItemService)
