"""
Data Models for Studygram
=========================

Design Philosophy:
------------------
1. No denormalized counters on Post
   - Like and comment counts are computed per read from the rows
   - Feed reads batch them in one aggregate query per relation (see queries.py)
   - Trade-off: one extra GROUP BY per read, but counts are never stale

2. Likes are specific to posts
   - Unique constraint (post, user) enforced at DB level
   - toggle_like relies on it instead of a read-then-write check

3. Uploaded files live in the object store (Django Storage backend)
   - PostFile keeps the storage path (for removal) and the public URL
   - Deleting a post cascades to its PostFile rows; blobs are removed
     by the service layer afterwards

Indexes Strategy:
-----------------
- post.created_at: feed ordering
- post.module + post.created_at: module-filtered feed
- like.post / comment.post: batched count aggregation
"""

from django.db import models
from django.contrib.auth.models import User
from django.core.validators import MinLengthValidator
from django.utils import timezone


class Module(models.Model):
    """
    Academic module used to tag posts.

    Reference data, maintained through the admin.
    """
    name = models.CharField(max_length=200, unique=True)
    ects_credits = models.PositiveSmallIntegerField(default=0)
    type = models.CharField(max_length=100, blank=True, db_index=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Post(models.Model):
    """
    A study material post: a title, a module tag and zero or more files.
    """
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='posts',
        db_index=True  # For the profile's "my posts" list
    )
    module = models.ForeignKey(
        Module,
        on_delete=models.PROTECT,
        related_name='posts'
    )
    title = models.CharField(
        max_length=300,
        validators=[MinLengthValidator(3)]
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['module', '-created_at'], name='post_module_recent_idx'),
        ]

    def __str__(self):
        return f"{self.title[:50]} by {self.author.email}"


class PostFile(models.Model):
    """
    A file attached to a post.

    version starts at 1; a replaced file is a new row, never an update.
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='files'
    )
    file_name = models.CharField(max_length=255)
    file_path = models.CharField(max_length=500)
    file_url = models.CharField(max_length=1000)
    file_type = models.CharField(max_length=255)
    file_size = models.PositiveBigIntegerField()
    version = models.PositiveIntegerField(default=1)
    uploaded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.file_name} (v{self.version})"


class Like(models.Model):
    """
    A user's like on a post.

    CONCURRENCY STRATEGY:
    - Unique constraint (post, user) enforced at DB level
    - Two concurrent likes: one insert wins, the other hits IntegrityError
      and is reported as "already liked"
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['post', 'user'],
                name='unique_like_per_user_per_post'
            )
        ]

    def __str__(self):
        return f"{self.user.email} liked post {self.post_id}"


class Comment(models.Model):
    """
    A flat comment on a post. Immutable once created.
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    content = models.TextField(
        validators=[MinLengthValidator(1)]
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )

    class Meta:
        ordering = ['-created_at']  # Newest first
        indexes = [
            models.Index(fields=['post', 'created_at'], name='comment_post_created_idx'),
        ]

    def __str__(self):
        return f"Comment by {self.author.email} on {self.post_id}"


# ============================================================================
# FILE CONSTANTS
# ============================================================================
# Client-generated ids of files that are not persisted yet start with this
TEMP_FILE_ID_PREFIX = 'file-'
MAX_COMMENT_LENGTH = 2000
