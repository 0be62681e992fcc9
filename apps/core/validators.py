"""
Validation utilities.

Provides the password policy shared by generated and caller-supplied
passwords, and common input validation helpers.
"""
import re
import secrets
import string
from typing import Dict, Any

from django.conf import settings


class InputValidator:
    """
    Common input validation functions.
    """

    EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

    @staticmethod
    def validate_email(email: str) -> bool:
        """
        Validate email format.

        Args:
            email: Email address to validate

        Returns:
            bool: True if valid, False otherwise
        """
        if not email:
            return False
        return bool(InputValidator.EMAIL_PATTERN.match(email))

    @staticmethod
    def normalize_email(email: str) -> str:
        """Lowercase the domain part of an email address."""
        email = (email or '').strip()
        try:
            email_name, domain_part = email.rsplit('@', 1)
        except ValueError:
            return email
        return email_name + '@' + domain_part.lower()


class PasswordPolicy:
    """
    Minimum-entropy password policy.

    Requirements:
    - At least MIN_LENGTH characters
    - Contains uppercase letter
    - Contains lowercase letter
    - Contains digit
    - Contains a symbol
    """

    MIN_LENGTH = 12
    SYMBOLS = '!@#$%^&*()-_=+[]{}<>?'

    @classmethod
    def validate(cls, password: str) -> Dict[str, Any]:
        """
        Check a password against the policy.

        Returns:
            dict: Validation result with details
        """
        result = {
            'valid': True,
            'errors': []
        }
        password = password or ''

        if len(password) < cls.MIN_LENGTH:
            result['valid'] = False
            result['errors'].append(f'Password must be at least {cls.MIN_LENGTH} characters long')

        if not re.search(r'[A-Z]', password):
            result['valid'] = False
            result['errors'].append('Password must contain at least one uppercase letter')

        if not re.search(r'[a-z]', password):
            result['valid'] = False
            result['errors'].append('Password must contain at least one lowercase letter')

        if not re.search(r'\d', password):
            result['valid'] = False
            result['errors'].append('Password must contain at least one digit')

        if not re.search(r'[^A-Za-z0-9]', password):
            result['valid'] = False
            result['errors'].append('Password must contain at least one symbol')

        return result

    @classmethod
    def generate(cls, length: int = None) -> str:
        """
        Generate a password from a cryptographically secure source.

        One character of each class is guaranteed, the rest are drawn from the
        full alphabet and the result is shuffled.
        """
        length = max(length or settings.GENERATED_PASSWORD_LENGTH, cls.MIN_LENGTH)
        classes = [string.ascii_uppercase, string.ascii_lowercase, string.digits, cls.SYMBOLS]
        alphabet = ''.join(classes)

        chars = [secrets.choice(char_class) for char_class in classes]
        chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]

        rng = secrets.SystemRandom()
        rng.shuffle(chars)
        return ''.join(chars)
