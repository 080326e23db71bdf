"""
Django management command to hash the admin password.

Usage:
    python manage.py hash_password <password>

Prints the hash to put in ADMIN_PASSWORD_HASH.
"""
from django.contrib.auth.hashers import check_password, make_password
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = 'Generate a password hash for ADMIN_PASSWORD_HASH'

    def add_arguments(self, parser):
        parser.add_argument('password', help='Plain-text password to hash')

    def handle(self, *args, **options):
        password = options['password']
        if not password:
            raise CommandError('Password must not be empty')

        password_hash = make_password(password)

        self.stdout.write(f'ADMIN_PASSWORD_HASH={password_hash}')

        if check_password(password, password_hash):
            self.stdout.write(self.style.SUCCESS('Verification: OK'))
        else:
            raise CommandError('Verification failed')
