"""
DRF Serializers
===============

Serializers handle:
1. Validation of incoming data (run by the services, not only the views)
2. Rendering of the view models the services compose

DESIGN DECISIONS:
-----------------
1. Input serializers are plain Serializers; the services own the writes
2. Output serializers render dicts (PostSummary, PostDetail, ...) rather than
   model instances, because counts and "liked" come from separate queries
3. Upload limits are read from settings at validation time
"""

from django.conf import settings
from django.contrib.auth.models import User
from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from .models import Module, MAX_COMMENT_LENGTH, TEMP_FILE_ID_PREFIX

SORT_CHOICES = ['recent', 'popular', 'comments']
ALL_MODULES = 'all'


def is_allowed_type(content_type: str) -> bool:
    for allowed in settings.STUDYGRAM_ALLOWED_UPLOAD_TYPES:
        if allowed.endswith('/*'):
            if content_type.startswith(allowed[:-1]):
                return True
        elif content_type == allowed:
            return True
    return False


def validate_upload(upload):
    """Size and MIME type checks for one uploaded file."""
    max_size = settings.STUDYGRAM_MAX_UPLOAD_SIZE
    if upload.size > max_size:
        raise serializers.ValidationError(
            _('File %(name)s exceeds the maximum size of %(size)d MB.') % {
                'name': upload.name,
                'size': max_size // (1024 * 1024),
            }
        )
    content_type = getattr(upload, 'content_type', None) or ''
    if not is_allowed_type(content_type):
        raise serializers.ValidationError(
            _('File type %(type)s is not allowed.') % {'type': content_type or '?'}
        )
    return upload


def validate_file_count(count: int):
    max_files = settings.STUDYGRAM_MAX_FILES
    if count > max_files:
        raise serializers.ValidationError(
            _('You can upload at most %(count)d files.') % {'count': max_files}
        )


def validate_post_title(value):
    if len(value.strip()) < 3:
        raise serializers.ValidationError(_('Title must be at least 3 characters long.'))
    return value.strip()


def title_field():
    return serializers.CharField(
        max_length=300,
        error_messages={
            'blank': _('Title must be at least 3 characters long.'),
            'required': _('Title is required.'),
            'max_length': _('Title must be at most 300 characters long.'),
        }
    )


def module_field():
    return serializers.PrimaryKeyRelatedField(
        queryset=Module.objects.all(),
        error_messages={
            'required': _('Please select a module.'),
            'null': _('Please select a module.'),
            'does_not_exist': _('Please select a valid module.'),
            'incorrect_type': _('Please select a valid module.'),
        }
    )


def first_name_field():
    return serializers.CharField(
        min_length=2,
        error_messages={
            'min_length': _('First name must be at least 2 characters long.'),
            'blank': _('First name must be at least 2 characters long.'),
        }
    )


def last_name_field():
    return serializers.CharField(
        min_length=2,
        error_messages={
            'min_length': _('Last name must be at least 2 characters long.'),
            'blank': _('Last name must be at least 2 characters long.'),
        }
    )


# ============================================================================
# INPUT
# ============================================================================

class FeedQuerySerializer(serializers.Serializer):
    """Feed filter: module id or 'all', free-text search, sort key."""
    module = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=ALL_MODULES)
    search = serializers.CharField(required=False, allow_blank=True, trim_whitespace=True, default='')
    sort = serializers.ChoiceField(
        choices=SORT_CHOICES,
        default='recent',
        error_messages={'invalid_choice': _('Unknown sort order "{input}".')}
    )

    def validate_module(self, value):
        if value in (None, '', ALL_MODULES):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise serializers.ValidationError(_('Invalid module filter.'))


class PostWriteSerializer(serializers.Serializer):
    """
    Title, module and new uploads for post creation.

    Author is taken from the authenticated user, never from input.
    """
    title = title_field()
    module = module_field()
    files = serializers.ListField(
        child=serializers.FileField(),
        required=False,
        default=list
    )

    def validate_title(self, value):
        return validate_post_title(value)

    def validate_files(self, value):
        validate_file_count(len(value))
        for upload in value:
            validate_upload(upload)
        return value


class SubmittedFileSerializer(serializers.Serializer):
    """
    One entry of an edited post's file list.

    Ids starting with TEMP_FILE_ID_PREFIX are new files and carry an upload;
    any other id names a stored PostFile that should be kept.
    """
    id = serializers.CharField()
    file = serializers.FileField(required=False, allow_null=True)

    def validate(self, attrs):
        if attrs['id'].startswith(TEMP_FILE_ID_PREFIX):
            upload = attrs.get('file')
            if upload is None:
                raise serializers.ValidationError(_('New file %(id)s has no content.') % {'id': attrs['id']})
            validate_upload(upload)
        return attrs


class PostUpdateSerializer(serializers.Serializer):
    """
    Edited post. Omitting "files" leaves the stored files untouched;
    a submitted list is the complete desired file set.
    """
    title = title_field()
    module = module_field()
    files = SubmittedFileSerializer(many=True, required=False)

    def validate_title(self, value):
        return validate_post_title(value)

    def validate_files(self, value):
        validate_file_count(len(value))
        return value


class CommentCreateSerializer(serializers.Serializer):
    content = serializers.CharField(
        max_length=MAX_COMMENT_LENGTH,
        error_messages={
            'blank': _('Comment cannot be empty.'),
            'required': _('Comment cannot be empty.'),
            'null': _('Comment cannot be empty.'),
            'max_length': _('Comment is too long.'),
        }
    )


class RegisterSerializer(serializers.Serializer):
    first_name = first_name_field()
    last_name = last_name_field()
    email = serializers.EmailField(
        error_messages={'invalid': _('Please enter a valid email address.')}
    )
    password = serializers.CharField(
        min_length=6,
        trim_whitespace=False,
        error_messages={'min_length': _('Password must be at least 6 characters long.')}
    )
    confirm_password = serializers.CharField(trim_whitespace=False)

    def validate_email(self, value):
        value = value.lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError(_('A user with this email address already exists.'))
        return value

    def validate(self, attrs):
        if attrs['password'] != attrs['confirm_password']:
            raise serializers.ValidationError({
                'confirm_password': _('Passwords do not match.')
            })
        return attrs


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField(
        error_messages={'invalid': _('Please enter a valid email address.')}
    )
    password = serializers.CharField(
        min_length=6,
        trim_whitespace=False,
        error_messages={'min_length': _('Password must be at least 6 characters long.')}
    )


class ProfileSerializer(serializers.Serializer):
    first_name = first_name_field()
    last_name = last_name_field()


# ============================================================================
# OUTPUT
# ============================================================================

class UserSummarySerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    username = serializers.CharField()


class PostFileSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    file_name = serializers.CharField()
    file_url = serializers.CharField()
    file_type = serializers.CharField()
    file_size = serializers.IntegerField()
    version = serializers.IntegerField()


class PostSummarySerializer(serializers.Serializer):
    """Feed entry. Counts come from the batched count queries."""
    id = serializers.IntegerField()
    title = serializers.CharField()
    module_id = serializers.IntegerField()
    module = serializers.CharField()
    user = UserSummarySerializer()
    likes = serializers.IntegerField()
    comments = serializers.IntegerField()
    created_at = serializers.DateTimeField()
    timestamp = serializers.CharField()


class PostDetailSerializer(PostSummarySerializer):
    liked = serializers.BooleanField()
    files = PostFileSerializer(many=True)


class SimplePostSerializer(serializers.Serializer):
    """Entry of the profile's own-posts list."""
    id = serializers.IntegerField()
    title = serializers.CharField()
    module_id = serializers.IntegerField()
    module = serializers.CharField()
    created_at = serializers.DateTimeField()
    files = PostFileSerializer(many=True)


class CommentViewSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    content = serializers.CharField()
    created_at = serializers.DateTimeField()
    timestamp = serializers.CharField()
    user = UserSummarySerializer()


class LikedStateSerializer(serializers.Serializer):
    post_id = serializers.IntegerField()
    liked = serializers.BooleanField()
    likes = serializers.IntegerField()


class ModuleSerializer(serializers.ModelSerializer):
    class Meta:
        model = Module
        fields = ['id', 'name', 'ects_credits', 'type']
        read_only_fields = fields


class ProfileViewSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    email = serializers.EmailField()
    first_name = serializers.CharField()
    last_name = serializers.CharField()
    username = serializers.CharField()
