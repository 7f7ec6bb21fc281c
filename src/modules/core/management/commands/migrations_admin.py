from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from modules.core.exceptions import MigrationError
from modules.core.migration_runner import MigrationService


class Command(BaseCommand):
    help = "Apply, roll back, inspect, validate and tag database migrations."

    def add_arguments(self, parser):
        scope = {
            "--contexts": "Comma separated app labels to restrict the operation to.",
            "--labels": "Comma separated migration names (or prefixes) to restrict to.",
        }
        subparsers = parser.add_subparsers(dest="action", required=True)

        for action in ("apply", "status", "validate", "applied"):
            sub = subparsers.add_parser(action)
            for flag, text in scope.items():
                sub.add_argument(flag, help=text)

        rollback = subparsers.add_parser("rollback")
        target = rollback.add_mutually_exclusive_group(required=True)
        target.add_argument("--count", type=int, help="Undo the N most recent migrations.")
        target.add_argument("--tag", help="Return to the state recorded under this tag.")
        target.add_argument("--date", help="Undo migrations applied after this ISO date.")
        for flag, text in scope.items():
            rollback.add_argument(flag, help=text)

        tag = subparsers.add_parser("tag")
        tag.add_argument("name")

        subparsers.add_parser("clear-checksums")

    def handle(self, *args, **options):
        service = MigrationService()
        action = options["action"]
        scope = {"contexts": options.get("contexts"), "labels": options.get("labels")}
        try:
            if action == "apply":
                message = service.apply(**scope)
            elif action == "rollback":
                message = service.rollback(
                    count=options["count"], tag=options["tag"], date=options["date"], **scope
                )
            elif action == "status":
                self._print_status(service.status(**scope))
                return
            elif action == "applied":
                for name in service.applied(**scope):
                    self.stdout.write(name)
                return
            elif action == "validate":
                message = service.validate(**scope)
            elif action == "tag":
                message = service.tag(options["name"])
            else:
                message = service.clear_checksums()
        except MigrationError as exc:
            raise CommandError(str(exc)) from exc
        self.stdout.write(self.style.SUCCESS(message))

    def _print_status(self, status):
        for state in ("applied", "pending"):
            names = status[state]
            self.stdout.write(f"{state.capitalize()} ({len(names)}):")
            for name in names:
                self.stdout.write(f"  {name}")
