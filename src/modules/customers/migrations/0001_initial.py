from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=200)),
                ("address", models.CharField(blank=True, default="", max_length=300)),
                ("is_legal_entity", models.BooleanField(default=False)),
                ("document_series", models.CharField(blank=True, max_length=50, null=True)),
                ("document_number", models.CharField(blank=True, max_length=100, null=True)),
                ("bank_name", models.CharField(blank=True, max_length=200, null=True)),
                ("bank_account", models.CharField(blank=True, max_length=100, null=True)),
            ],
            options={
                "db_table": "customers",
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["name"], name="customers_name_idx"),
                    models.Index(fields=["is_legal_entity"], name="customers_legal_idx"),
                    models.Index(
                        fields=["document_series", "document_number"],
                        name="customers_document_idx",
                    ),
                ],
            },
        ),
    ]
