from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from modules.core.sweep import sweep_registry


class Command(BaseCommand):
    help = "Fully invalidate the named result caches of one or every entity."

    def add_arguments(self, parser):
        parser.add_argument(
            "entities",
            nargs="*",
            help="Entity prefixes to sweep (e.g. product invoice). Defaults to all.",
        )

    def handle(self, *args, **options):
        entities = options["entities"] or [entry.entity for entry in sweep_registry.entries()]
        failures = 0
        for entity in entities:
            try:
                report = sweep_registry.sweep(entity)
            except LookupError as exc:
                raise CommandError(str(exc)) from exc
            if report.ok:
                self.stdout.write(
                    self.style.SUCCESS(f"{entity}: cleared {len(report.cleared)} cache(s)")
                )
            else:
                failures += 1
                self.stdout.write(
                    self.style.WARNING(
                        f"{entity}: cleared {len(report.cleared)}, "
                        f"failed {', '.join(sorted(report.failed))}"
                    )
                )
        if failures:
            raise CommandError(f"Sweep incomplete for {failures} entity type(s).")
