"""
Tests for Studygram

Focus areas:
1. Feed aggregation (batched counts, stable sorting, filters)
2. Post detail consistency (dangling references, viewer-relative liked)
3. Like toggle semantics
4. Multi-step post writes (compensation, ownership, best-effort cleanup)
5. API surface (status mapping, multipart uploads, sessions)
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

from django.contrib.auth.models import AnonymousUser, User
from django.core.files.storage import InMemoryStorage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import DatabaseError, IntegrityError, connection, transaction
from django.test import TestCase, override_settings
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework.test import APIClient

from .accounts import register_user
from .exceptions import StorageError, join_errors
from .models import Comment, Like, Module, Post, PostFile
from .results import ErrorKind
from .services import (
    add_comment,
    create_post,
    delete_post,
    get_comments,
    get_post,
    get_posts_by_user,
    list_modules,
    list_posts,
    toggle_like,
    update_post,
)
from .storage import ObjectStore
from .utils import derive_username, format_timestamp, group_modules_by_type

TEST_STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.InMemoryStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}


def pdf(name='notes.pdf', content=b'%PDF-1.4 study notes'):
    return SimpleUploadedFile(name, content, content_type='application/pdf')


class FlakyStorage(InMemoryStorage):
    """Saves succeed until fail_after uploads, then raise."""

    def __init__(self, fail_after=1, **kwargs):
        super().__init__(**kwargs)
        self.fail_after = fail_after
        self.saved = []

    def _save(self, name, content):
        if len(self.saved) >= self.fail_after:
            raise OSError('bucket unavailable')
        name = super()._save(name, content)
        self.saved.append(name)
        return name


class UnaddressableStorage(InMemoryStorage):
    """Saves work, public URLs cannot be built."""

    def url(self, name):
        raise OSError('no public endpoint')


class BrokenRemoveStorage(InMemoryStorage):
    """Uploads work, removals always fail."""

    def delete(self, name):
        raise OSError('remove refused')


class StudygramTestCase(TestCase):
    """Shared fixtures: two users, two modules, an in-memory object store."""

    def setUp(self):
        self.author = User.objects.create_user(
            'sarah.j@example.com', 'sarah.j@example.com', 'secret12',
            first_name='Sarah', last_name='Johnson'
        )
        self.other = User.objects.create_user(
            'alex@example.com', 'alex@example.com', 'secret12',
            first_name='Alex', last_name='Chen'
        )
        self.analysis = Module.objects.create(name='Analysis I', ects_credits=8, type='Mathematics')
        self.databases = Module.objects.create(name='Databases', ects_credits=5, type='Computer Science')
        self.store = ObjectStore(InMemoryStorage())

    def make_post(self, title, module=None, author=None, hours_ago=0):
        return Post.objects.create(
            author=author or self.author,
            module=module or self.analysis,
            title=title,
            created_at=timezone.now() - timedelta(hours=hours_ago)
        )

    def like(self, post, *users):
        for user in users:
            Like.objects.create(post=post, user=user)

    def comment(self, post, count=1, author=None):
        for i in range(count):
            Comment.objects.create(post=post, author=author or self.other, content=f'Comment {i}')


class FeedTestCase(StudygramTestCase):
    """
    CRITICAL: These tests verify that:
    1. Counts are exact and fetched in batches
    2. popular/comments sorting is stable over the recent order
    """

    def setUp(self):
        super().setUp()
        self.third = User.objects.create_user('mia@example.com', 'mia@example.com', 'secret12')
        self.oldest = self.make_post('Linear maps summary', hours_ago=3)
        self.middle = self.make_post('SQL joins cheatsheet', module=self.databases, hours_ago=2)
        self.newest = self.make_post('Analysis exam 2023', hours_ago=1)

    def ids(self, result):
        self.assertTrue(result.success, result.error)
        return [entry['id'] for entry in result.data]

    def test_empty_feed_is_success(self):
        """No posts is a valid, successful result."""
        Post.objects.all().delete()
        result = list_posts()
        self.assertTrue(result.success)
        self.assertEqual(result.data, [])

    def test_recent_is_newest_first(self):
        result = list_posts(sort_by='recent')
        self.assertEqual(self.ids(result), [self.newest.id, self.middle.id, self.oldest.id])

    def test_popular_orders_by_likes_and_is_stable(self):
        """
        oldest: 2 likes, middle: 1 like, newest: 1 like
        Equal counts keep the recent order (newest before middle).
        """
        self.like(self.oldest, self.other, self.third)
        self.like(self.middle, self.other)
        self.like(self.newest, self.third)

        result = list_posts(sort_by='popular')

        self.assertEqual(self.ids(result), [self.oldest.id, self.newest.id, self.middle.id])
        likes = [entry['likes'] for entry in result.data]
        self.assertEqual(likes, sorted(likes, reverse=True))

    def test_comments_sort_is_stable(self):
        self.comment(self.middle, count=3)
        result = list_posts(sort_by='comments')
        self.assertEqual(self.ids(result), [self.middle.id, self.newest.id, self.oldest.id])
        self.assertEqual(result.data[0]['comments'], 3)
        self.assertEqual(result.data[1]['comments'], 0)

    def test_counts_reflect_rows(self):
        self.like(self.newest, self.other, self.third)
        self.comment(self.newest, count=2)
        entry = list_posts().data[0]
        self.assertEqual(entry['likes'], 2)
        self.assertEqual(entry['comments'], 2)

    def test_module_filter(self):
        result = list_posts(module_id=self.databases.id)
        self.assertEqual(self.ids(result), [self.middle.id])

        result = list_posts(module_id='all')
        self.assertEqual(len(result.data), 3)

    def test_search_matches_all_terms_case_insensitive(self):
        result = list_posts(search='analysis EXAM')
        self.assertEqual(self.ids(result), [self.newest.id])

        result = list_posts(search='  ')
        self.assertEqual(len(result.data), 3)

    def test_search_combined_with_module(self):
        result = list_posts(module_id=self.databases.id, search='analysis')
        self.assertEqual(self.ids(result), [])

    def test_invalid_sort_is_validation_error(self):
        result = list_posts(sort_by='random')
        self.assertFalse(result.success)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_invalid_module_is_validation_error(self):
        result = list_posts(module_id='maths')
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_no_n_plus_one_queries(self):
        """
        Feed of 20 posts must NOT cause 20+ queries.

        Expected: candidates + like counts + comment counts = 3
        """
        for i in range(17):
            post = self.make_post(f'Exercise sheet {i}', hours_ago=5 + i)
            self.like(post, self.other)
            self.comment(post)

        with CaptureQueriesContext(connection) as context:
            result = list_posts(sort_by='popular')

        self.assertEqual(len(result.data), 20)
        self.assertLessEqual(
            len(context), 3,
            f"Expected <=3 queries, got {len(context)}. Queries: {[q['sql'][:100] for q in context]}"
        )

    def test_failed_count_lookup_fails_whole_feed(self):
        """No partial or stale counts: a count failure is an upstream error."""
        with patch('studyfeed.services.count_comments_by_post', side_effect=DatabaseError('timeout')):
            result = list_posts(sort_by='comments')
        self.assertFalse(result.success)
        self.assertEqual(result.kind, ErrorKind.UPSTREAM)
        self.assertIn('timeout', result.error)
        self.assertIsNone(result.data)

    def test_failed_like_count_fails_whole_feed(self):
        with patch('studyfeed.services.count_likes_by_post', side_effect=DatabaseError('timeout')):
            result = list_posts(sort_by='popular')
        self.assertEqual(result.kind, ErrorKind.UPSTREAM)
        self.assertIsNone(result.data)

    def test_equal_timestamps_fall_back_to_newest_id(self):
        """Posts created in the same instant still have one fixed order."""
        Post.objects.all().delete()
        moment = timezone.now()
        posts = [
            Post.objects.create(author=self.author, module=self.analysis, title=f'Batch upload {i}', created_at=moment)
            for i in range(4)
        ]
        expected = [post.id for post in reversed(posts)]
        self.assertEqual(self.ids(list_posts(sort_by='recent')), expected)
        self.assertEqual(self.ids(list_posts(sort_by='popular')), expected)


class PostDetailTestCase(StudygramTestCase):

    def setUp(self):
        super().setUp()
        self.post = self.make_post('Analysis cheatsheet')
        PostFile.objects.create(
            post=self.post, file_name='sheet.pdf', file_path='uploads/1/sheet.pdf',
            file_url='/media/uploads/1/sheet.pdf', file_type='application/pdf', file_size=20
        )

    def test_detail_composition(self):
        self.like(self.post, self.other)
        self.comment(self.post, count=2)

        result = get_post(self.post.id, viewer=self.other)

        self.assertTrue(result.success)
        detail = result.data
        self.assertEqual(detail['title'], 'Analysis cheatsheet')
        self.assertEqual(detail['module'], 'Analysis I')
        self.assertEqual(detail['module_id'], self.analysis.id)
        self.assertEqual(detail['likes'], 1)
        self.assertEqual(detail['comments'], 2)
        self.assertTrue(detail['liked'])
        self.assertEqual(detail['user']['name'], 'Sarah Johnson')
        self.assertEqual(len(detail['files']), 1)
        self.assertEqual(detail['files'][0]['version'], 1)

    def test_liked_is_viewer_relative(self):
        self.like(self.post, self.other)
        self.assertFalse(get_post(self.post.id, viewer=self.author).data['liked'])
        self.assertFalse(get_post(self.post.id).data['liked'])
        self.assertFalse(get_post(self.post.id, viewer=AnonymousUser()).data['liked'])

    def test_username_is_email_local_part(self):
        self.assertEqual(get_post(self.post.id).data['user']['username'], 'sarah.j')

    def test_missing_post_is_not_found(self):
        result = get_post(999999)
        self.assertEqual(result.kind, ErrorKind.NOT_FOUND)

    def test_dangling_author_is_not_found(self):
        """A post whose author row is gone must never produce a partial view."""
        with patch('studyfeed.services.get_user_by_id', return_value=None):
            result = get_post(self.post.id)
        self.assertFalse(result.success)
        self.assertEqual(result.kind, ErrorKind.NOT_FOUND)
        self.assertIsNone(result.data)

    def test_dangling_module_is_not_found(self):
        with patch('studyfeed.services.get_module_by_id', return_value=None):
            result = get_post(self.post.id)
        self.assertEqual(result.kind, ErrorKind.NOT_FOUND)


class LikeToggleTestCase(StudygramTestCase):

    def setUp(self):
        super().setUp()
        self.post = self.make_post('Statistics formulas')

    def test_toggle_twice_round_trips(self):
        """like -> unlike returns to the original state, count moves by one each time."""
        first = toggle_like(self.post.id, self.other)
        self.assertTrue(first.success)
        self.assertTrue(first.data['liked'])
        self.assertEqual(first.data['likes'], 1)

        second = toggle_like(self.post.id, self.other)
        self.assertFalse(second.data['liked'])
        self.assertEqual(second.data['likes'], 0)
        self.assertFalse(Like.objects.filter(post=self.post, user=self.other).exists())

    def test_toggle_from_liked_state(self):
        self.like(self.post, self.other, self.author)
        result = toggle_like(self.post.id, self.other)
        self.assertFalse(result.data['liked'])
        self.assertEqual(result.data['likes'], 1)

    def test_concurrent_insert_counts_as_already_liked(self):
        """
        Simulate a concurrent toggle: our delete finds nothing, but the
        insert hits the unique constraint. The outcome is "liked".
        """
        self.like(self.post, self.other)
        fake_like = MagicMock()
        fake_like.objects.filter.return_value.delete.return_value = (0, {})
        fake_like.objects.create.side_effect = IntegrityError('duplicate key')

        with patch('studyfeed.services.Like', fake_like):
            result = toggle_like(self.post.id, self.other)

        self.assertTrue(result.success)
        self.assertTrue(result.data['liked'])
        self.assertEqual(result.data['likes'], 1)

    def test_unique_constraint_at_db_level(self):
        self.like(self.post, self.other)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Like.objects.create(post=self.post, user=self.other)

    def test_requires_login(self):
        self.assertEqual(toggle_like(self.post.id, None).kind, ErrorKind.AUTHENTICATION)
        self.assertEqual(toggle_like(self.post.id, AnonymousUser()).kind, ErrorKind.AUTHENTICATION)

    def test_missing_post(self):
        self.assertEqual(toggle_like(999999, self.other).kind, ErrorKind.NOT_FOUND)


class CommentTestCase(StudygramTestCase):

    def setUp(self):
        super().setUp()
        self.post = self.make_post('Databases exam notes', module=self.databases)

    def test_add_comment_composes_view(self):
        result = add_comment(self.post.id, self.author, '  Thanks, very useful!  ')

        self.assertTrue(result.success)
        self.assertEqual(result.data['content'], 'Thanks, very useful!')
        self.assertEqual(result.data['timestamp'], 'Just now')
        self.assertEqual(result.data['user']['username'], 'sarah.j')
        self.assertEqual(result.data['user']['name'], 'Sarah Johnson')

    def test_username_identical_across_paths(self):
        add_comment(self.post.id, self.author, 'First')
        listed = get_comments(self.post.id).data[0]
        detail = get_post(self.post.id).data
        self.assertEqual(listed['user']['username'], 'sarah.j')
        self.assertEqual(detail['user']['username'], 'sarah.j')

    def test_comments_newest_first(self):
        older = Comment.objects.create(
            post=self.post, author=self.other, content='old',
            created_at=timezone.now() - timedelta(hours=2)
        )
        newer = Comment.objects.create(post=self.post, author=self.other, content='new')
        result = get_comments(self.post.id)
        self.assertEqual([c['id'] for c in result.data], [newer.id, older.id])
        self.assertEqual(result.data[1]['timestamp'], '2 hours ago')

    def test_blank_comment_rejected(self):
        result = add_comment(self.post.id, self.author, '   ')
        self.assertEqual(result.kind, ErrorKind.VALIDATION)
        self.assertEqual(result.error, 'Comment cannot be empty.')
        self.assertFalse(Comment.objects.exists())

    def test_comment_on_missing_post(self):
        self.assertEqual(add_comment(999999, self.author, 'Hi').kind, ErrorKind.NOT_FOUND)
        self.assertEqual(get_comments(999999).kind, ErrorKind.NOT_FOUND)

    def test_comment_requires_login(self):
        self.assertEqual(add_comment(self.post.id, None, 'Hi').kind, ErrorKind.AUTHENTICATION)


class CreatePostTestCase(StudygramTestCase):

    def test_create_then_get_round_trip(self):
        """Title, module and file count of the created post match the input."""
        result = create_post(
            self.author,
            {'title': 'Analysis cheatsheet', 'module': self.analysis.id, 'files': [pdf('a.pdf'), pdf('b.pdf')]},
            store=self.store
        )
        self.assertTrue(result.success, result.error)

        detail = get_post(result.data['id']).data
        self.assertEqual(detail['title'], 'Analysis cheatsheet')
        self.assertEqual(detail['module_id'], self.analysis.id)
        self.assertEqual(len(detail['files']), 2)
        self.assertEqual({f['file_name'] for f in detail['files']}, {'a.pdf', 'b.pdf'})

        for post_file in PostFile.objects.filter(post_id=result.data['id']):
            self.assertTrue(post_file.file_path.startswith(f'uploads/{self.author.id}/'))
            self.assertTrue(self.store.storage.exists(post_file.file_path))

    def test_create_without_files(self):
        result = create_post(self.author, {'title': 'Just a title', 'module': self.analysis.id}, store=self.store)
        self.assertTrue(result.success)
        self.assertEqual(get_post(result.data['id']).data['files'], [])

    def test_validation_errors_joined(self):
        result = create_post(self.author, {'title': 'ab', 'module': 424242}, store=self.store)
        self.assertEqual(result.kind, ErrorKind.VALIDATION)
        self.assertIn('Title must be at least 3 characters long.', result.error)
        self.assertIn('Please select a valid module.', result.error)
        self.assertIn(', ', result.error)
        self.assertFalse(Post.objects.exists())

    @override_settings(STUDYGRAM_MAX_FILES=2)
    def test_too_many_files(self):
        files = [pdf(f'{i}.pdf') for i in range(3)]
        result = create_post(self.author, {'title': 'Many files', 'module': self.analysis.id, 'files': files})
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    @override_settings(STUDYGRAM_MAX_UPLOAD_SIZE=10)
    def test_file_too_large(self):
        result = create_post(self.author, {'title': 'Big file', 'module': self.analysis.id, 'files': [pdf()]})
        self.assertEqual(result.kind, ErrorKind.VALIDATION)
        self.assertIn('exceeds the maximum size', result.error)

    def test_disallowed_type(self):
        script = SimpleUploadedFile('run.sh', b'echo hi', content_type='application/x-sh')
        result = create_post(self.author, {'title': 'Script', 'module': self.analysis.id, 'files': [script]})
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_images_allowed_by_wildcard(self):
        image = SimpleUploadedFile('graph.png', b'\x89PNG', content_type='image/png')
        result = create_post(
            self.author, {'title': 'Graph', 'module': self.analysis.id, 'files': [image]}, store=self.store
        )
        self.assertTrue(result.success, result.error)

    def test_requires_login(self):
        result = create_post(AnonymousUser(), {'title': 'Nope', 'module': self.analysis.id}, store=self.store)
        self.assertEqual(result.kind, ErrorKind.AUTHENTICATION)

    def test_upload_failure_removes_earlier_blobs(self):
        """Second upload fails: the first blob is removed and no post row exists."""
        storage = FlakyStorage(fail_after=1)
        result = create_post(
            self.author,
            {'title': 'Half uploaded', 'module': self.analysis.id, 'files': [pdf('a.pdf'), pdf('b.pdf')]},
            store=ObjectStore(storage)
        )
        self.assertEqual(result.kind, ErrorKind.UPSTREAM)
        self.assertIn('bucket unavailable', result.error)
        self.assertFalse(Post.objects.exists())
        self.assertEqual(len(storage.saved), 1)
        self.assertFalse(storage.exists(storage.saved[0]))

    def test_row_failure_rolls_back_post_and_removes_blobs(self):
        with patch.object(PostFile.objects, 'bulk_create', side_effect=DatabaseError('insert failed')):
            result = create_post(
                self.author,
                {'title': 'Rolled back', 'module': self.analysis.id, 'files': [pdf()]},
                store=self.store
            )
        self.assertEqual(result.kind, ErrorKind.UPSTREAM)
        self.assertFalse(Post.objects.filter(title='Rolled back').exists())
        self.assertEqual(self.store.storage.listdir(f'uploads/{self.author.id}')[1], [])

    def test_url_failure_removes_the_saved_blob(self):
        """The blob is already stored when the URL lookup fails; it must not be left behind."""
        storage = UnaddressableStorage()
        result = create_post(
            self.author,
            {'title': 'No public URL', 'module': self.analysis.id, 'files': [pdf('a.pdf')]},
            store=ObjectStore(storage)
        )
        self.assertEqual(result.kind, ErrorKind.UPSTREAM)
        self.assertIn('no public endpoint', result.error)
        self.assertFalse(Post.objects.exists())
        self.assertEqual(storage.listdir(f'uploads/{self.author.id}')[1], [])


class UpdatePostTestCase(StudygramTestCase):

    def setUp(self):
        super().setUp()
        result = create_post(
            self.author,
            {'title': 'Lecture notes', 'module': self.analysis.id, 'files': [pdf('keep.pdf'), pdf('drop.pdf')]},
            store=self.store
        )
        self.post_id = result.data['id']
        self.keep = PostFile.objects.get(post_id=self.post_id, file_name='keep.pdf')
        self.drop = PostFile.objects.get(post_id=self.post_id, file_name='drop.pdf')

    def test_foreign_edit_is_refused_and_changes_nothing(self):
        result = update_post(
            self.post_id, self.other,
            {'title': 'Hijacked', 'module': self.databases.id, 'files': []},
            store=self.store
        )
        self.assertEqual(result.kind, ErrorKind.AUTHORIZATION)

        post = Post.objects.get(id=self.post_id)
        self.assertEqual(post.title, 'Lecture notes')
        self.assertEqual(post.module_id, self.analysis.id)
        self.assertEqual(PostFile.objects.filter(post_id=self.post_id).count(), 2)
        self.assertTrue(self.store.storage.exists(self.drop.file_path))

    def test_diff_keeps_removes_and_adds(self):
        result = update_post(
            self.post_id, self.author,
            {
                'title': 'Lecture notes (v2)',
                'module': self.databases.id,
                'files': [
                    {'id': str(self.keep.id)},
                    {'id': 'file-1712345678-abc1234', 'file': pdf('new.pdf')},
                ],
            },
            store=self.store
        )
        self.assertTrue(result.success, result.error)

        detail = get_post(self.post_id).data
        self.assertEqual(detail['title'], 'Lecture notes (v2)')
        self.assertEqual(detail['module'], 'Databases')
        self.assertEqual(sorted(f['file_name'] for f in detail['files']), ['keep.pdf', 'new.pdf'])
        self.assertFalse(self.store.storage.exists(self.drop.file_path))
        self.assertTrue(self.store.storage.exists(self.keep.file_path))

    def test_omitted_file_list_leaves_files(self):
        result = update_post(
            self.post_id, self.author,
            {'title': 'Renamed notes', 'module': self.analysis.id},
            store=self.store
        )
        self.assertTrue(result.success)
        self.assertEqual(PostFile.objects.filter(post_id=self.post_id).count(), 2)

    def test_unknown_file_id_rejected(self):
        result = update_post(
            self.post_id, self.author,
            {'title': 'Lecture notes', 'module': self.analysis.id, 'files': [{'id': '987654'}]},
            store=self.store
        )
        self.assertEqual(result.kind, ErrorKind.VALIDATION)
        self.assertEqual(PostFile.objects.filter(post_id=self.post_id).count(), 2)

    def test_new_file_without_upload_rejected(self):
        result = update_post(
            self.post_id, self.author,
            {'title': 'Lecture notes', 'module': self.analysis.id, 'files': [{'id': 'file-1-x'}]},
            store=self.store
        )
        self.assertEqual(result.kind, ErrorKind.VALIDATION)

    def test_blob_cleanup_failure_is_not_fatal(self):
        store = ObjectStore(BrokenRemoveStorage())
        result = update_post(
            self.post_id, self.author,
            {'title': 'Lecture notes', 'module': self.analysis.id, 'files': [{'id': str(self.keep.id)}]},
            store=store
        )
        self.assertTrue(result.success)
        self.assertFalse(PostFile.objects.filter(id=self.drop.id).exists())

    def test_row_failure_keeps_post_and_removes_new_blob(self):
        """
        The database step fails after the new file is uploaded:
        the post is unchanged and the new blob is removed again.
        """
        with patch.object(PostFile.objects, 'bulk_create', side_effect=DatabaseError('insert failed')):
            result = update_post(
                self.post_id, self.author,
                {
                    'title': 'Lecture notes (v2)',
                    'module': self.databases.id,
                    'files': [
                        {'id': str(self.keep.id)},
                        {'id': 'file-1712345678-new', 'file': pdf('new.pdf')},
                    ],
                },
                store=self.store
            )

        self.assertEqual(result.kind, ErrorKind.UPSTREAM)
        post = Post.objects.get(id=self.post_id)
        self.assertEqual(post.title, 'Lecture notes')
        self.assertEqual(post.module_id, self.analysis.id)
        self.assertEqual(
            sorted(PostFile.objects.filter(post_id=self.post_id).values_list('file_name', flat=True)),
            ['drop.pdf', 'keep.pdf']
        )
        self.assertTrue(self.store.storage.exists(self.drop.file_path))
        stored = self.store.storage.listdir(f'uploads/{self.author.id}')[1]
        self.assertEqual(len(stored), 2)
        self.assertFalse(any(name.endswith('new.pdf') for name in stored))

    def test_missing_post(self):
        result = update_post(999999, self.author, {'title': 'x' * 5, 'module': self.analysis.id})
        self.assertEqual(result.kind, ErrorKind.NOT_FOUND)


class DeletePostTestCase(StudygramTestCase):

    def setUp(self):
        super().setUp()
        result = create_post(
            self.author,
            {'title': 'Old exam', 'module': self.analysis.id, 'files': [pdf('exam.pdf'), pdf('solutions.pdf')]},
            store=self.store
        )
        self.post_id = result.data['id']
        self.paths = list(PostFile.objects.filter(post_id=self.post_id).values_list('file_path', flat=True))
        post = Post.objects.get(id=self.post_id)
        self.like(post, self.other)
        self.comment(post, count=2)

    def test_delete_cascades_and_removes_blobs(self):
        result = delete_post(self.post_id, self.author, store=self.store)

        self.assertTrue(result.success)
        self.assertFalse(Post.objects.filter(id=self.post_id).exists())
        self.assertFalse(Like.objects.filter(post_id=self.post_id).exists())
        self.assertFalse(Comment.objects.filter(post_id=self.post_id).exists())
        self.assertFalse(PostFile.objects.filter(post_id=self.post_id).exists())
        for path in self.paths:
            self.assertFalse(self.store.storage.exists(path))

    def test_storage_failure_still_deletes_post(self):
        """Blob removal fails for every file; the post stays deleted."""
        storage = BrokenRemoveStorage()
        with patch.object(storage, 'delete', wraps=storage.delete) as delete:
            result = delete_post(self.post_id, self.author, store=ObjectStore(storage))

        self.assertTrue(result.success)
        self.assertFalse(Post.objects.filter(id=self.post_id).exists())
        self.assertEqual(delete.call_count, len(self.paths))

    def test_foreign_delete_is_refused(self):
        result = delete_post(self.post_id, self.other, store=self.store)
        self.assertEqual(result.kind, ErrorKind.AUTHORIZATION)
        self.assertTrue(Post.objects.filter(id=self.post_id).exists())


class ProfileAndModulesTestCase(StudygramTestCase):

    def test_posts_by_user(self):
        self.make_post('Mine', hours_ago=1)
        self.make_post('Not mine', author=self.other)
        result = get_posts_by_user(self.author)
        self.assertEqual([p['title'] for p in result.data], ['Mine'])
        self.assertEqual(result.data[0]['module'], 'Analysis I')

    def test_posts_by_user_requires_login(self):
        self.assertEqual(get_posts_by_user(AnonymousUser()).kind, ErrorKind.AUTHENTICATION)

    def test_list_modules(self):
        result = list_modules()
        self.assertEqual([m['name'] for m in result.data], ['Analysis I', 'Databases'])

        grouped = list_modules(grouped=True).data
        self.assertEqual(list(grouped), ['Computer Science', 'Mathematics'])
        self.assertEqual(grouped['Mathematics'][0]['ects_credits'], 8)

    def test_register_validation(self):
        result = register_user({
            'first_name': 'L', 'last_name': 'Schmidt', 'email': 'not-an-email',
            'password': 'secret12', 'confirm_password': 'secret13',
        })
        self.assertEqual(result.kind, ErrorKind.VALIDATION)
        self.assertIn('First name must be at least 2 characters long.', result.error)
        self.assertIn('Please enter a valid email address.', result.error)

    def test_register_mismatched_passwords(self):
        result = register_user({
            'first_name': 'Lena', 'last_name': 'Schmidt', 'email': 'lena@example.com',
            'password': 'secret12', 'confirm_password': 'secret13',
        })
        self.assertEqual(result.error, 'Passwords do not match.')

    def test_register_duplicate_email(self):
        result = register_user({
            'first_name': 'Sarah', 'last_name': 'Again', 'email': 'SARAH.J@example.com',
            'password': 'secret12', 'confirm_password': 'secret12',
        })
        self.assertEqual(result.kind, ErrorKind.VALIDATION)


class HelperTestCase(TestCase):

    def test_derive_username(self):
        self.assertEqual(derive_username('sarah.j@example.com'), 'sarah.j')
        self.assertEqual(derive_username('a@b@c'), 'a')
        self.assertEqual(derive_username('no-at-sign'), 'no-at-sign')

    def test_format_timestamp(self):
        now = timezone.now()
        self.assertEqual(format_timestamp(now - timedelta(seconds=30), now), 'Just now')
        self.assertEqual(format_timestamp(now - timedelta(minutes=1), now), '1 minute ago')
        self.assertEqual(format_timestamp(now - timedelta(minutes=5), now), '5 minutes ago')
        self.assertEqual(format_timestamp(now - timedelta(hours=3), now), '3 hours ago')
        self.assertEqual(format_timestamp(now - timedelta(days=1, hours=2), now), '1 day ago')
        self.assertEqual(format_timestamp(now - timedelta(days=4), now), '4 days ago')

    def test_group_modules_by_type(self):
        modules = [
            Module(name='A', type='Math'),
            Module(name='B', type='CS'),
            Module(name='C', type='Math'),
        ]
        grouped = group_modules_by_type(modules)
        self.assertEqual([m.name for m in grouped['Math']], ['A', 'C'])
        self.assertEqual([m.name for m in grouped['CS']], ['B'])

    def test_join_errors_flattens_nested(self):
        errors = {'title': ['Too short.'], 'files': [{}, {'file': ['Empty.']}]}
        self.assertEqual(join_errors(errors), 'Too short., Empty.')

    def test_object_store_remove_reports_failures(self):
        store = ObjectStore(BrokenRemoveStorage())
        with self.assertRaises(StorageError) as ctx:
            store.remove(['a.pdf', 'b.pdf'])
        self.assertEqual(ctx.exception.paths, ['a.pdf', 'b.pdf'])


@override_settings(STORAGES=TEST_STORAGES)
class ApiTestCase(StudygramTestCase):
    """HTTP surface: status mapping, multipart uploads, sessions."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_feed_is_public(self):
        self.make_post('Public notes')
        response = self.client.get('/api/feed/', {'sort': 'popular'})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['data'][0]['title'], 'Public notes')

    def test_feed_bad_sort_is_400(self):
        response = self.client.get('/api/feed/', {'sort': 'sideways'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['kind'], 'validation')

    def test_create_requires_login(self):
        response = self.client.post('/api/posts/', {'title': 'Nope', 'module': self.analysis.id})
        self.assertIn(response.status_code, (401, 403))

    def test_create_detail_and_download(self):
        self.client.force_authenticate(self.author)
        response = self.client.post(
            '/api/posts/',
            {'title': 'Uploaded via API', 'module': self.analysis.id, 'files': [pdf('api.pdf', b'api bytes')]},
            format='multipart'
        )
        self.assertEqual(response.status_code, 201, response.data)
        post_id = response.data['data']['id']

        detail = self.client.get(f'/api/posts/{post_id}/')
        self.assertEqual(detail.status_code, 200)
        files = detail.data['data']['files']
        self.assertEqual(len(files), 1)
        self.assertEqual(detail.data['data']['user']['username'], 'sarah.j')

        download = self.client.get(f"/api/files/{files[0]['id']}/download/")
        self.assertEqual(download.status_code, 200)
        self.assertEqual(b''.join(download.streaming_content), b'api bytes')

    def test_edit_with_multipart_file_ids(self):
        self.client.force_authenticate(self.author)
        post_id = self.client.post(
            '/api/posts/',
            {'title': 'Editable', 'module': self.analysis.id, 'files': [pdf('one.pdf')]},
            format='multipart'
        ).data['data']['id']
        kept = PostFile.objects.get(post_id=post_id)

        response = self.client.put(
            f'/api/posts/{post_id}/',
            {
                'title': 'Edited',
                'module': self.analysis.id,
                'file_ids': [str(kept.id), 'file-99-new'],
                'file-99-new': pdf('two.pdf'),
            },
            format='multipart'
        )
        self.assertEqual(response.status_code, 200, response.data)
        names = sorted(PostFile.objects.filter(post_id=post_id).values_list('file_name', flat=True))
        self.assertEqual(names, ['one.pdf', 'two.pdf'])

    def test_foreign_edit_is_403(self):
        post = self.make_post('Sarahs post')
        self.client.force_authenticate(self.other)
        response = self.client.put(
            f'/api/posts/{post.id}/',
            {'title': 'Mine now', 'module': self.analysis.id},
            format='json'
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['kind'], 'authorization')

    def test_missing_post_is_404(self):
        response = self.client.get('/api/posts/999999/')
        self.assertEqual(response.status_code, 404)

    def test_download_of_missing_blob_is_404(self):
        post = self.make_post('Lost attachment')
        lost = PostFile.objects.create(
            post=post, file_name='gone.pdf', file_path='uploads/1/gone.pdf',
            file_url='/media/uploads/1/gone.pdf', file_type='application/pdf', file_size=10
        )
        response = self.client.get(f'/api/files/{lost.id}/download/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['kind'], 'not_found')

    def test_unsupported_language_falls_back_to_english(self):
        """Only English messages ship; a German client still gets them."""
        post = self.make_post('Language check')
        self.client.force_authenticate(self.other)
        response = self.client.post(
            f'/api/posts/{post.id}/comments/', {'content': 'Danke!'},
            format='json', HTTP_ACCEPT_LANGUAGE='de'
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['data']['timestamp'], 'Just now')
        self.assertTrue(response['Content-Language'].startswith('en'))

    def test_like_and_comment(self):
        post = self.make_post('Likeable')
        self.client.force_authenticate(self.other)

        like = self.client.post(f'/api/posts/{post.id}/like/')
        self.assertEqual(like.data['data'], {'post_id': post.id, 'liked': True, 'likes': 1})

        comment = self.client.post(f'/api/posts/{post.id}/comments/', {'content': 'Nice!'}, format='json')
        self.assertEqual(comment.status_code, 201)
        self.assertEqual(comment.data['data']['timestamp'], 'Just now')
        self.assertEqual(comment.data['data']['user']['username'], 'alex')

        listed = self.client.get(f'/api/posts/{post.id}/comments/')
        self.assertEqual(len(listed.data['data']), 1)

    def test_delete_via_api(self):
        post = self.make_post('Delete me')
        self.client.force_authenticate(self.author)
        response = self.client.delete(f'/api/posts/{post.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Post.objects.filter(id=post.id).exists())

    def test_register_login_whoami_profile(self):
        response = self.client.post('/api/auth/register/', {
            'first_name': 'Lena', 'last_name': 'Schmidt', 'email': 'Lena.S@example.com',
            'password': 'secret12', 'confirm_password': 'secret12',
        }, format='json')
        self.assertEqual(response.status_code, 201, response.data)
        self.assertEqual(response.data['data']['username'], 'lena.s')

        bad = self.client.post('/api/auth/login/', {'email': 'lena.s@example.com', 'password': 'wrong12'}, format='json')
        self.assertEqual(bad.status_code, 401)

        login = self.client.post('/api/auth/login/', {'email': 'lena.s@example.com', 'password': 'secret12'}, format='json')
        self.assertEqual(login.status_code, 200, login.data)

        whoami = self.client.get('/api/auth/whoami/')
        self.assertTrue(whoami.data['authenticated'])
        self.assertEqual(whoami.data['email'], 'lena.s@example.com')

        profile = self.client.patch('/api/me/', {'first_name': 'Helena', 'last_name': 'Schmidt'}, format='json')
        self.assertEqual(profile.status_code, 200)
        self.assertEqual(User.objects.get(email='lena.s@example.com').first_name, 'Helena')

        mine = self.client.get('/api/me/posts/')
        self.assertEqual(mine.data['data'], [])

    def test_modules_grouped(self):
        response = self.client.get('/api/modules/', {'grouped': '1'})
        self.assertEqual(response.status_code, 200)
        self.assertIn('Mathematics', response.data['data'])
