from django.core.management.base import BaseCommand, CommandError
from django.contrib.auth import get_user_model

from accounts.models import Role

User = get_user_model()


class Command(BaseCommand):
    help = "Assigns a platform role (owner, platform, charity_admin, donor) to an existing user."

    def add_arguments(self, parser):
        parser.add_argument('--email', type=str, required=True, help='Email of the user to update')
        parser.add_argument('--role', type=str, required=True, choices=Role.values, help='Role to assign')
        parser.add_argument('--verify-identity', action='store_true', help='Also mark the user as identity verified')

    def handle(self, *args, **options):
        email = options['email']
        try:
            user = User.objects.get(email=email)
        except User.DoesNotExist:
            raise CommandError(f"User with email {email} does not exist.")

        previous = user.role
        user.role = options['role']
        fields = ['role']
        if options['verify_identity']:
            user.is_identity_verified = True
            fields.append('is_identity_verified')
        user.save(update_fields=fields)

        self.stdout.write(self.style.SUCCESS(f"User {email}: role {previous} -> {user.role}."))
