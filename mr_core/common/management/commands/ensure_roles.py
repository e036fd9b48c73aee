# mr_core/common/management/commands/ensure_roles.py

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand, CommandError

from mr_core.common.permissions import ROLE_GROUPS


class Command(BaseCommand):
    help = (
        "Ensure the DOCTOR / PATIENT / ADMIN role groups exist (idempotent). "
        "Optionally put a user into one of them."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--check",
            action="store_true",
            help="Only report missing groups; exit non-zero if any are missing.",
        )
        parser.add_argument("--user", help="Username to grant a role to.")
        parser.add_argument("--role", choices=ROLE_GROUPS, help="Role group for --user.")

    def handle(self, *args, **options):
        if bool(options.get("user")) != bool(options.get("role")):
            raise CommandError("--user and --role must be given together")

        if options.get("check"):
            existing = set(Group.objects.filter(name__in=ROLE_GROUPS).values_list("name", flat=True))
            missing = [name for name in ROLE_GROUPS if name not in existing]
            if missing:
                raise CommandError(f"Missing role groups: {', '.join(missing)}")
            self.stdout.write(self.style.SUCCESS("All role groups present."))
            return

        created = 0
        for name in ROLE_GROUPS:
            _, was_created = Group.objects.get_or_create(name=name)
            created += 1 if was_created else 0

        self.stdout.write(self.style.SUCCESS(f"Roles ensured. Newly created: {created}"))

        if options.get("user"):
            self._grant(options["user"], options["role"])

    def _grant(self, username: str, role: str) -> None:
        User = get_user_model()
        try:
            user = User.objects.get(username=username)
        except User.DoesNotExist:
            raise CommandError(f"User not found: {username}")

        # One medical-records role per user
        other_roles = user.groups.filter(name__in=ROLE_GROUPS).exclude(name=role)
        if other_roles.exists():
            held = ", ".join(other_roles.values_list("name", flat=True))
            raise CommandError(f"{username} already holds role {held}")

        user.groups.add(Group.objects.get(name=role))
        self.stdout.write(self.style.SUCCESS(f"{username} granted {role}"))
