"""
Feed Aggregator
===============

Composes post, like, comment and file rows into the view models the API
returns, and performs the post/like/comment writes.

Every operation returns a Result (see results.py); expected failures are
never raised. The object store is passed in explicitly (store=...), and
the acting user is always an explicit argument.

READ CONSISTENCY:
-----------------
A post view is assembled from several independent queries without a
lock. An edit or delete between them can yield a view mixing snapshots.
This is accepted: reads are best-effort, never cached.

LIKE TOGGLE:
------------
Problem: check "like exists?" then insert/delete races with a concurrent
toggle of the same user.

Approach: delete first. If a row was removed, the post is now unliked.
Otherwise insert; the (post, user) unique constraint rejects a duplicate
inserted concurrently, and IntegrityError means "already liked".
No prior read is needed.

MULTI-STEP WRITES:
------------------
Creating/updating a post touches the object store and several tables.
- Blobs are uploaded first
- All row changes run in ONE transaction
- If anything fails, blobs uploaded by this call are removed again
  (compensation). Cleanup failures are logged, never raised.
- Blobs of deleted files are removed after the rows are gone, best-effort.
"""

import logging
from typing import Optional, TypedDict

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone
from django.utils.translation import gettext as _

from .exceptions import StorageError, join_errors
from .models import Comment, Like, Post, PostFile, TEMP_FILE_ID_PREFIX
from .queries import (
    count_comments,
    count_comments_by_post,
    count_likes,
    count_likes_by_post,
    get_comments_for_post,
    get_feed_candidates,
    get_module_by_id,
    get_modules,
    get_post_files,
    get_post_row,
    get_posts_for_author,
    get_user_by_id,
    has_liked,
)
from .results import ErrorKind, Result
from .serializers import (
    CommentCreateSerializer,
    FeedQuerySerializer,
    ModuleSerializer,
    PostUpdateSerializer,
    PostWriteSerializer,
)
from .storage import ObjectStore
from .utils import format_timestamp, group_modules_by_type, user_summary

logger = logging.getLogger(__name__)


class UserSummary(TypedDict):
    id: int
    name: str
    username: str


class FileView(TypedDict):
    id: int
    file_name: str
    file_url: str
    file_type: str
    file_size: int
    version: int


class PostSummary(TypedDict):
    id: int
    title: str
    module_id: int
    module: str
    user: UserSummary
    likes: int
    comments: int
    created_at: object
    timestamp: str


class PostDetail(PostSummary):
    liked: bool
    files: list[FileView]


class CommentView(TypedDict):
    id: int
    content: str
    created_at: object
    timestamp: str
    user: UserSummary


class LikedState(TypedDict):
    post_id: int
    liked: bool
    likes: int


# ============================================================================
# HELPERS
# ============================================================================

def _is_authenticated(user) -> bool:
    return user is not None and getattr(user, 'is_authenticated', False)


def _login_required() -> Result:
    return Result.fail(ErrorKind.AUTHENTICATION, _('You must be logged in to do this.'))


def _post_not_found() -> Result:
    return Result.fail(ErrorKind.NOT_FOUND, _('Post not found.'))


def _upstream(message: str, exc: Exception) -> Result:
    return Result.fail(ErrorKind.UPSTREAM, f"{message}: {exc}")


def _file_view(post_file: PostFile) -> FileView:
    return {
        'id': post_file.id,
        'file_name': post_file.file_name,
        'file_url': post_file.file_url,
        'file_type': post_file.file_type,
        'file_size': post_file.file_size,
        'version': post_file.version,
    }


def _summary(post: Post, author, module, likes: int, comments: int, now=None) -> PostSummary:
    return {
        'id': post.id,
        'title': post.title,
        'module_id': module.id,
        'module': module.name,
        'user': user_summary(author),
        'likes': likes,
        'comments': comments,
        'created_at': post.created_at,
        'timestamp': format_timestamp(post.created_at, now),
    }


def _comment_view(comment: Comment, author, timestamp: str) -> CommentView:
    return {
        'id': comment.id,
        'content': comment.content,
        'created_at': comment.created_at,
        'timestamp': timestamp,
        'user': user_summary(author),
    }


def _discard_blobs(store: ObjectStore, paths: list[str]) -> None:
    """Best-effort blob removal. Failures are logged, never raised."""
    if not paths:
        return
    try:
        store.remove(paths)
    except StorageError as exc:
        logger.warning(f"Blob cleanup incomplete, left behind {exc.paths}: {exc}")


def _upload_all(store: ObjectStore, user_id, uploads) -> list[dict]:
    """
    Upload every file and return the stored descriptors.

    On failure, blobs uploaded so far are removed and StorageError re-raised.
    """
    stored = []
    try:
        for upload in uploads:
            content_type = getattr(upload, 'content_type', None) or 'application/octet-stream'
            path = store.upload(store.upload_path(user_id, upload.name), upload, content_type)
            item = {
                'file_name': upload.name,
                'file_path': path,
                'file_type': content_type,
                'file_size': upload.size,
            }
            # Recorded before the URL lookup so a failure there still removes the blob
            stored.append(item)
            item['file_url'] = store.public_url(path)
    except StorageError:
        _discard_blobs(store, [item['file_path'] for item in stored])
        raise
    return stored


def _file_rows(post: Post, stored: list[dict]) -> list[PostFile]:
    return [PostFile(post=post, **item) for item in stored]


# ============================================================================
# READS
# ============================================================================

def list_posts(module_id='all', search: str = '', sort_by: str = 'recent') -> Result:
    """
    Feed: filtered and sorted post summaries.

    QUERY COUNT: 3
    1. Candidate posts with author + module
    2. Like counts for all candidates (GROUP BY)
    3. Comment counts for all candidates (GROUP BY)

    Ordering:
    - recent: newest first
    - popular / comments: stable sort by count over the recent order, so
      equal counts keep their recent order. Sorting happens in Python after
      the counts are fetched.
    """
    query = FeedQuerySerializer(data={
        'module': module_id,
        'search': search or '',
        'sort': sort_by or 'recent',
    })
    if not query.is_valid():
        return Result.fail(ErrorKind.VALIDATION, join_errors(query.errors))
    params = query.validated_data

    try:
        posts = get_feed_candidates(params['module'], params['search'])
        post_ids = [post.id for post in posts]
        like_counts = count_likes_by_post(post_ids) if post_ids else {}
        comment_counts = count_comments_by_post(post_ids) if post_ids else {}
    except DatabaseError as exc:
        logger.exception(f"Feed query failed: {exc}")
        return _upstream(_('Posts could not be loaded'), exc)

    if params['sort'] == 'popular':
        posts = sorted(posts, key=lambda post: like_counts.get(post.id, 0), reverse=True)
    elif params['sort'] == 'comments':
        posts = sorted(posts, key=lambda post: comment_counts.get(post.id, 0), reverse=True)

    now = timezone.now()
    return Result.ok([
        _summary(
            post,
            post.author,
            post.module,
            like_counts.get(post.id, 0),
            comment_counts.get(post.id, 0),
            now
        )
        for post in posts
    ])


def get_post(post_id: int, viewer=None) -> Result:
    """
    Post detail for a viewer.

    The author and module are looked up separately from the post row.
    If either is missing, the post counts as not found. A partial view is never returned.
    Without an authenticated viewer, liked is False.
    """
    try:
        post = get_post_row(post_id)
        if post is None:
            return _post_not_found()

        author = get_user_by_id(post.author_id)
        module = get_module_by_id(post.module_id)
        if author is None or module is None:
            logger.warning(f"Post {post_id} references a missing author or module")
            return _post_not_found()

        viewer_id = viewer.id if _is_authenticated(viewer) else None
        likes = count_likes(post.id)
        comments = count_comments(post.id)
        liked = has_liked(post.id, viewer_id)
        files = get_post_files(post.id)
    except DatabaseError as exc:
        logger.exception(f"Loading post {post_id} failed: {exc}")
        return _upstream(_('Post could not be loaded'), exc)

    detail: PostDetail = {
        **_summary(post, author, module, likes, comments),
        'liked': liked,
        'files': [_file_view(post_file) for post_file in files],
    }
    return Result.ok(detail)


def get_comments(post_id: int) -> Result:
    """Comments of a post, newest first."""
    try:
        if not Post.objects.filter(id=post_id).exists():
            return _post_not_found()
        comments = get_comments_for_post(post_id)
    except DatabaseError as exc:
        logger.exception(f"Loading comments of post {post_id} failed: {exc}")
        return _upstream(_('Comments could not be loaded'), exc)

    now = timezone.now()
    return Result.ok([
        _comment_view(comment, comment.author, format_timestamp(comment.created_at, now))
        for comment in comments
    ])


def get_posts_by_user(user) -> Result:
    """The caller's own posts with modules and files (profile page)."""
    if not _is_authenticated(user):
        return _login_required()

    try:
        posts = get_posts_for_author(user.id)
    except DatabaseError as exc:
        logger.exception(f"Loading posts of user {user.id} failed: {exc}")
        return _upstream(_('Posts could not be loaded'), exc)

    return Result.ok([
        {
            'id': post.id,
            'title': post.title,
            'module_id': post.module_id,
            'module': post.module.name,
            'created_at': post.created_at,
            'files': [_file_view(post_file) for post_file in post.files.all()],
        }
        for post in posts
    ])


def list_modules(grouped: bool = False) -> Result:
    """All modules by name, optionally grouped by module type."""
    try:
        modules = get_modules()
    except DatabaseError as exc:
        logger.exception(f"Loading modules failed: {exc}")
        return _upstream(_('Modules could not be loaded'), exc)

    if grouped:
        return Result.ok({
            module_type: ModuleSerializer(items, many=True).data
            for module_type, items in sorted(group_modules_by_type(modules).items())
        })
    return Result.ok(ModuleSerializer(modules, many=True).data)


def get_file(file_id: int) -> Result:
    """A stored file row, for download."""
    try:
        post_file = PostFile.objects.filter(id=file_id).first()
    except DatabaseError as exc:
        logger.exception(f"Loading file {file_id} failed: {exc}")
        return _upstream(_('File could not be loaded'), exc)
    if post_file is None:
        return Result.fail(ErrorKind.NOT_FOUND, _('File not found.'))
    return Result.ok(post_file)


# ============================================================================
# LIKES & COMMENTS
# ============================================================================

def toggle_like(post_id: int, user) -> Result:
    """
    Toggle the user's like on a post.

    Two sequential calls restore the original state; each moves the
    like count by exactly one.
    """
    if not _is_authenticated(user):
        return _login_required()

    try:
        if not Post.objects.filter(id=post_id).exists():
            return _post_not_found()

        deleted_count, _details = Like.objects.filter(post_id=post_id, user=user).delete()
        if deleted_count > 0:
            liked = False
        else:
            try:
                with transaction.atomic():
                    Like.objects.create(post_id=post_id, user=user)
            except IntegrityError:
                # A concurrent toggle inserted the same like first
                logger.info(f"Like of user {user.id} on post {post_id} already exists")
            liked = True

        likes = count_likes(post_id)
    except DatabaseError as exc:
        logger.exception(f"Toggling like on post {post_id} failed: {exc}")
        return _upstream(_('Like could not be saved'), exc)

    state: LikedState = {'post_id': post_id, 'liked': liked, 'likes': likes}
    return Result.ok(state)


def add_comment(post_id: int, user, content: str) -> Result:
    """
    Add a comment and return it composed for display.

    The timestamp label of a fresh comment is always "Just now".
    """
    if not _is_authenticated(user):
        return _login_required()

    serializer = CommentCreateSerializer(data={'content': content})
    if not serializer.is_valid():
        return Result.fail(ErrorKind.VALIDATION, join_errors(serializer.errors))

    try:
        if not Post.objects.filter(id=post_id).exists():
            return _post_not_found()
        comment = Comment.objects.create(
            post_id=post_id,
            author=user,
            content=serializer.validated_data['content']
        )
        author = get_user_by_id(comment.author_id) or user
    except DatabaseError as exc:
        logger.exception(f"Saving comment on post {post_id} failed: {exc}")
        return _upstream(_('Comment could not be saved'), exc)

    return Result.ok(_comment_view(comment, author, _('Just now')))


# ============================================================================
# POST WRITES
# ============================================================================

def create_post(user, data: dict, store: Optional[ObjectStore] = None) -> Result:
    """
    Create a post with its files.

    1. Validate title, module, files
    2. Upload every file to the object store
    3. Insert Post + PostFile rows in one transaction
    On failure in 2 or 3, blobs uploaded here are removed again.
    """
    if not _is_authenticated(user):
        return _login_required()

    serializer = PostWriteSerializer(data=data)
    if not serializer.is_valid():
        return Result.fail(ErrorKind.VALIDATION, join_errors(serializer.errors))
    validated = serializer.validated_data

    store = store or ObjectStore()
    try:
        stored = _upload_all(store, user.id, validated['files'])
    except StorageError as exc:
        logger.error(f"Upload for new post of user {user.id} failed: {exc}")
        return _upstream(_('File upload failed'), exc)

    try:
        with transaction.atomic():
            post = Post.objects.create(
                author=user,
                module=validated['module'],
                title=validated['title']
            )
            PostFile.objects.bulk_create(_file_rows(post, stored))
    except DatabaseError as exc:
        logger.exception(f"Saving new post of user {user.id} failed: {exc}")
        _discard_blobs(store, [item['file_path'] for item in stored])
        return _upstream(_('Post could not be saved'), exc)

    logger.info(f"Post {post.id} created by user {user.id} with {len(stored)} file(s)")
    return Result.ok({'id': post.id})


def update_post(post_id: int, user, data: dict, store: Optional[ObjectStore] = None) -> Result:
    """
    Edit title/module and reconcile the file list. Author only.

    data['files'] is the complete desired file list, as [{id, file?}]:
    - ids with TEMP_FILE_ID_PREFIX are new and get uploaded
    - other ids are stored files to keep
    - stored files not listed are deleted (rows, then blobs)
    Without 'files', stored files are left as they are.
    """
    if not _is_authenticated(user):
        return _login_required()

    try:
        post = get_post_row(post_id)
    except DatabaseError as exc:
        logger.exception(f"Loading post {post_id} failed: {exc}")
        return _upstream(_('Post could not be loaded'), exc)
    if post is None:
        return _post_not_found()

    if post.author_id != user.id:
        logger.warning(f"User {user.id} tried to edit post {post_id} of user {post.author_id}")
        return Result.fail(ErrorKind.AUTHORIZATION, _('You can only edit your own posts.'))

    serializer = PostUpdateSerializer(data=data)
    if not serializer.is_valid():
        return Result.fail(ErrorKind.VALIDATION, join_errors(serializer.errors))
    validated = serializer.validated_data

    submitted = validated.get('files')
    removed = []
    new_uploads = []
    if submitted is not None:
        existing = get_post_files(post.id)
        existing_ids = {str(post_file.id) for post_file in existing}
        keep_ids = {entry['id'] for entry in submitted if not entry['id'].startswith(TEMP_FILE_ID_PREFIX)}
        unknown = sorted(keep_ids - existing_ids)
        if unknown:
            return Result.fail(
                ErrorKind.VALIDATION,
                _('Unknown file(s): %(ids)s') % {'ids': ', '.join(unknown)}
            )
        removed = [post_file for post_file in existing if str(post_file.id) not in keep_ids]
        new_uploads = [entry['file'] for entry in submitted if entry['id'].startswith(TEMP_FILE_ID_PREFIX)]

    store = store or ObjectStore()
    try:
        stored = _upload_all(store, user.id, new_uploads)
    except StorageError as exc:
        logger.error(f"Upload for post {post_id} failed: {exc}")
        return _upstream(_('File upload failed'), exc)

    try:
        with transaction.atomic():
            post.title = validated['title']
            post.module = validated['module']
            post.save(update_fields=['title', 'module', 'updated_at'])
            if removed:
                PostFile.objects.filter(id__in=[post_file.id for post_file in removed]).delete()
            PostFile.objects.bulk_create(_file_rows(post, stored))
    except DatabaseError as exc:
        logger.exception(f"Saving post {post_id} failed: {exc}")
        _discard_blobs(store, [item['file_path'] for item in stored])
        return _upstream(_('Post could not be saved'), exc)

    _discard_blobs(store, [post_file.file_path for post_file in removed])
    logger.info(
        f"Post {post.id} updated by user {user.id}: "
        f"{len(stored)} file(s) added, {len(removed)} removed"
    )
    return Result.ok({'id': post.id})


def delete_post(post_id: int, user, store: Optional[ObjectStore] = None) -> Result:
    """
    Delete a post. Author only.

    The row delete cascades to files, likes and comments. Blob removal
    afterwards is best-effort: a storage failure is logged, and the post
    stays deleted.
    """
    if not _is_authenticated(user):
        return _login_required()

    try:
        post = get_post_row(post_id)
        if post is None:
            return _post_not_found()
        if post.author_id != user.id:
            logger.warning(f"User {user.id} tried to delete post {post_id} of user {post.author_id}")
            return Result.fail(ErrorKind.AUTHORIZATION, _('You can only delete your own posts.'))

        paths = [post_file.file_path for post_file in get_post_files(post.id)]
        post.delete()
    except DatabaseError as exc:
        logger.exception(f"Deleting post {post_id} failed: {exc}")
        return _upstream(_('Post could not be deleted'), exc)

    _discard_blobs(store or ObjectStore(), paths)
    logger.info(f"Post {post_id} deleted by user {user.id}")
    return Result.ok({'id': post_id, 'deleted': True})
