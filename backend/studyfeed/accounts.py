"""
Accounts: registration, login and profile editing.

Identity is Django's auth framework. authenticate_user() is the identity
provider step: credentials in, session out (or an authentication error).
The session's user id is what every ownership check compares against.
"""

import logging

from django.contrib.auth import authenticate, login
from django.contrib.auth.models import User
from django.db import DatabaseError, IntegrityError, transaction
from django.utils.translation import gettext as _

from .exceptions import join_errors
from .results import ErrorKind, Result
from .serializers import LoginSerializer, ProfileSerializer, RegisterSerializer
from .utils import derive_username

logger = logging.getLogger(__name__)


def profile_view(user: User) -> dict:
    return {
        'user_id': user.id,
        'email': user.email,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'username': derive_username(user.email),
    }


def register_user(data: dict) -> Result:
    """
    Create an account. The email doubles as Django's username.
    """
    serializer = RegisterSerializer(data=data)
    if not serializer.is_valid():
        return Result.fail(ErrorKind.VALIDATION, join_errors(serializer.errors))
    validated = serializer.validated_data

    try:
        with transaction.atomic():
            user = User.objects.create_user(
                username=validated['email'],
                email=validated['email'],
                password=validated['password'],
                first_name=validated['first_name'],
                last_name=validated['last_name'],
            )
    except IntegrityError:
        # Registered concurrently with the same email
        return Result.fail(ErrorKind.VALIDATION, _('A user with this email address already exists.'))
    except DatabaseError as exc:
        logger.exception(f"Registering {validated['email']} failed: {exc}")
        return Result.fail(ErrorKind.UPSTREAM, f"{_('Registration failed')}: {exc}")

    logger.info(f"Registered user {user.id}")
    return Result.ok(profile_view(user))


def authenticate_user(request, email: str, password: str) -> Result:
    """Check credentials and open a session for the user."""
    serializer = LoginSerializer(data={'email': email, 'password': password})
    if not serializer.is_valid():
        return Result.fail(ErrorKind.VALIDATION, join_errors(serializer.errors))

    user = authenticate(
        request,
        username=serializer.validated_data['email'].lower(),
        password=serializer.validated_data['password']
    )
    if user is None:
        logger.info("Failed login attempt")
        return Result.fail(ErrorKind.AUTHENTICATION, _('Invalid email or password.'))

    login(request, user)
    return Result.ok(profile_view(user))


def get_profile(user) -> Result:
    if user is None or not user.is_authenticated:
        return Result.fail(ErrorKind.AUTHENTICATION, _('You must be logged in to do this.'))
    return Result.ok(profile_view(user))


def edit_profile(user, data: dict) -> Result:
    """Update first and last name of the logged-in user."""
    if user is None or not user.is_authenticated:
        return Result.fail(ErrorKind.AUTHENTICATION, _('You must be logged in to do this.'))

    serializer = ProfileSerializer(data=data)
    if not serializer.is_valid():
        return Result.fail(ErrorKind.VALIDATION, join_errors(serializer.errors))

    user.first_name = serializer.validated_data['first_name']
    user.last_name = serializer.validated_data['last_name']
    try:
        user.save(update_fields=['first_name', 'last_name'])
    except DatabaseError as exc:
        logger.exception(f"Updating profile of user {user.id} failed: {exc}")
        return Result.fail(ErrorKind.UPSTREAM, f"{_('Profile could not be saved')}: {exc}")

    return Result.ok(profile_view(user))
