from django.apps import AppConfig


class CustomersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.customers"
    label = "customers"

    def ready(self) -> None:
        from modules.core.sweep import sweep_registry
        from modules.customers.services import CustomerService

        sweep_registry.register(CustomerService)
