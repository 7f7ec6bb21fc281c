from __future__ import annotations

import random
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from modules.catalog.models import Category, PriceHistory, Product
from modules.core.sweep import sweep_registry
from modules.customers.models import Customer
from modules.geography.models import Region, Settlement
from modules.invoicing.models import Invoice, InvoiceItem


class Command(BaseCommand):
    help = "Seed database with realistic development data."

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        with transaction.atomic():
            settlements = self._seed_geography()
            products = self._seed_catalog()
            customers = self._seed_customers()
            invoices_created = self._seed_invoices(customers, settlements, products)

        # Rows were written behind the services' backs.
        sweep_registry.sweep_all()

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"settlements={len(settlements)}, "
                f"products={len(products)}, "
                f"customers={len(customers)}, "
                f"invoices={invoices_created}"
            )
        )

    def _seed_geography(self) -> list[Settlement]:
        self.stdout.write("Creating regions and settlements...")
        geography = {
            ("Sao Paulo", "Brazil"): ["Campinas", "Santos", "Sorocaba"],
            ("Minas Gerais", "Brazil"): ["Belo Horizonte", "Uberlandia"],
            ("Bavaria", "Germany"): ["Munich", "Nuremberg"],
            ("Lombardy", "Italy"): ["Milan", "Bergamo"],
        }
        settlements: list[Settlement] = []
        for (region_name, country), towns in geography.items():
            region, _ = Region.objects.get_or_create(
                name=region_name, defaults={"country": country}
            )
            for town in towns:
                settlement, _ = Settlement.objects.get_or_create(
                    name=town, defaults={"region": region}
                )
                settlements.append(settlement)
        self.stdout.write(self.style.SUCCESS("Creating regions and settlements... Done!"))
        return settlements

    def _seed_catalog(self) -> list[Product]:
        self.stdout.write("Creating products...")
        catalog = [
            ("ELET-001", "Monitor 27\"", "Electronics", "Vision Co", Decimal("1299.90")),
            ("ELET-002", "Mechanical Keyboard", "Electronics", "KeyWorks", Decimal("399.90")),
            ("ELET-003", "Gaming Mouse", "Electronics", "KeyWorks", Decimal("249.90")),
            ("ELET-004", "Notebook 14\"", "Electronics", "Vision Co", Decimal("3999.00")),
            ("MOV-001", "Office Desk", "Furniture", "Madeira SA", Decimal("899.00")),
            ("MOV-002", "Ergonomic Chair", "Furniture", "Madeira SA", Decimal("1499.00")),
            ("MOV-003", "Bookcase", "Furniture", "Casa Forte", Decimal("699.00")),
            ("OFF-001", "A4 Paper", "Office", "PaperMill", Decimal("29.90")),
            ("OFF-002", "Blue Pen", "Office", "PaperMill", Decimal("4.90")),
            ("OFF-003", "Notebook", "Office", "PaperMill", Decimal("19.90")),
            ("OFF-004", "Calculator", "Office", "Numeris", Decimal("89.90")),
        ]
        products: list[Product] = []
        today = timezone.localdate()
        for code, name, category_name, manufacturer, price in catalog:
            category, _ = Category.objects.get_or_create(name=category_name)
            product, created = Product.objects.get_or_create(
                code=code,
                defaults={"name": name, "category": category, "manufacturer": manufacturer},
            )
            if created:
                # Three price points over the last quarter, the latest one current.
                for months_ago, factor in ((3, Decimal("0.90")), (1, Decimal("0.95")), (0, 1)):
                    PriceHistory.objects.create(
                        product=product,
                        change_date=today - timedelta(days=30 * months_ago),
                        price=(price * factor).quantize(Decimal("0.01")),
                    )
            products.append(product)
        self.stdout.write(self.style.SUCCESS("Creating products... Done!"))
        return products

    def _seed_customers(self) -> list[Customer]:
        self.stdout.write("Creating customers...")
        seed_customers = [
            ("Ana Souza", False, "AB", "390533", None, None),
            ("Bruno Lima LTDA", True, None, None, "Banco Central", "0001-4455"),
            ("Carla Mendes", False, "CD", "987654", None, None),
            ("Daniel Costa", False, None, None, None, None),
            ("Eduardo Alves ME", True, None, None, "First Bank", "7788-0012"),
            ("Fernanda Rocha", False, "EF", "741258", None, None),
            ("Gabriel Santos EIRELI", True, None, None, None, None),
            ("Helena Ferreira", False, "GH", "258147", None, None),
        ]
        customers: list[Customer] = []
        for name, legal, series, number, bank, account in seed_customers:
            customer, _ = Customer.objects.get_or_create(
                name=name,
                defaults={
                    "address": f"{random.randint(1, 999)} Main Street",
                    "is_legal_entity": legal,
                    "document_series": series,
                    "document_number": number,
                    "bank_name": bank,
                    "bank_account": account,
                },
            )
            customers.append(customer)
        self.stdout.write(self.style.SUCCESS("Creating customers... Done!"))
        return customers

    def _seed_invoices(
        self,
        customers: list[Customer],
        settlements: list[Settlement],
        products: list[Product],
    ) -> int:
        self.stdout.write("Creating invoices...")
        if Invoice.objects.exists():
            self.stdout.write(self.style.WARNING("Skipping invoices (already seeded)."))
            return 0

        today = timezone.localdate()
        for _ in range(40):
            invoice = Invoice.objects.create(
                invoice_date=today - timedelta(days=random.randint(0, 90)),
                customer=random.choice(customers),
                settlement=random.choice(settlements),
                total_amount=Decimal("0.00"),
                enterprise=random.choice(["Main Store", "Online", "Outlet"]),
            )
            total = Decimal("0.00")
            for product in random.sample(products, k=random.randint(1, 4)):
                current = product.price_history.order_by("-change_date").first()
                item = InvoiceItem.objects.create(
                    invoice=invoice,
                    product=product,
                    quantity=random.randint(1, 5),
                    price=current.price if current else Decimal("1.00"),
                )
                total += item.subtotal
            Invoice.objects.filter(id=invoice.id).update(total_amount=total)

        self.stdout.write(self.style.SUCCESS("Creating invoices... Done!"))
        return 40
