"""
Query Strategies
================

Read-side queries against the relational store. The services compose
these into view models; nothing here builds response shapes.

THE N+1 PROBLEM:
----------------
Naive feed of 50 posts:
    posts = Post.objects.all()                 # 1 query
    for post in posts:
        post.likes.count()                     # 50 queries
        post.comments.count()                  # 50 queries

OUR APPROACH:
-------------
1. Fetch candidate posts in ONE query (author + module JOINed)
2. Count likes for the whole candidate id set in ONE GROUP BY query
3. Count comments the same way

This gives us 3 queries for any feed size.
"""

from typing import Iterable, Optional

from django.contrib.auth.models import User
from django.db.models import Count, Q

from .models import Comment, Like, Module, Post, PostFile


def get_post_row(post_id: int) -> Optional[Post]:
    """
    Fetch a bare post row, without joins.

    Author and module are resolved separately so a dangling reference
    is detected instead of hidden by an INNER JOIN.
    """
    return Post.objects.filter(id=post_id).first()


def get_user_by_id(user_id) -> Optional[User]:
    return User.objects.filter(id=user_id).first()


def get_module_by_id(module_id) -> Optional[Module]:
    return Module.objects.filter(id=module_id).first()


def search_posts(search_text: str):
    """
    Title search: every whitespace-separated term must appear (case-insensitive).

    Returns a queryset so it composes with the module filter.
    """
    condition = Q()
    for term in search_text.split():
        condition &= Q(title__icontains=term)
    return Post.objects.filter(condition)


def get_feed_candidates(module_id: Optional[int] = None, search_text: str = '') -> list[Post]:
    """
    Candidate posts for the feed, newest first.

    Query: 1 (with author + module JOIN)
    """
    queryset = search_posts(search_text) if search_text.strip() else Post.objects.all()
    if module_id is not None:
        queryset = queryset.filter(module_id=module_id)
    return list(
        queryset
        .select_related('author', 'module')
        .order_by('-created_at', '-id')
    )


def count_likes_by_post(post_ids: Iterable[int]) -> dict[int, int]:
    """
    Like counts for a batch of posts.

    Query: 1

    SELECT post_id, COUNT(id) FROM like WHERE post_id IN (...) GROUP BY post_id

    Posts without likes are absent from the result (count 0).
    """
    rows = (
        Like.objects
        .filter(post_id__in=list(post_ids))
        .values('post_id')
        .annotate(count=Count('id'))
        .order_by()
    )
    return {row['post_id']: row['count'] for row in rows}


def count_comments_by_post(post_ids: Iterable[int]) -> dict[int, int]:
    """Comment counts for a batch of posts. Query: 1"""
    rows = (
        Comment.objects
        .filter(post_id__in=list(post_ids))
        .values('post_id')
        .annotate(count=Count('id'))
        .order_by()
    )
    return {row['post_id']: row['count'] for row in rows}


def count_likes(post_id: int) -> int:
    return Like.objects.filter(post_id=post_id).count()


def count_comments(post_id: int) -> int:
    return Comment.objects.filter(post_id=post_id).count()


def has_liked(post_id: int, user_id) -> bool:
    if user_id is None:
        return False
    return Like.objects.filter(post_id=post_id, user_id=user_id).exists()


def get_post_files(post_id: int) -> list[PostFile]:
    return list(PostFile.objects.filter(post_id=post_id).order_by('id'))


def get_comments_for_post(post_id: int) -> list[Comment]:
    """
    All comments of a post, newest first, authors JOINed.

    Query: 1
    """
    return list(
        Comment.objects
        .filter(post_id=post_id)
        .select_related('author')
        .order_by('-created_at', '-id')
    )


def get_posts_for_author(user_id) -> list[Post]:
    """
    A user's own posts with modules and files.

    Queries: 2 (posts + prefetched files)
    """
    return list(
        Post.objects
        .filter(author_id=user_id)
        .select_related('module')
        .prefetch_related('files')
        .order_by('-created_at', '-id')
    )


def get_modules() -> list[Module]:
    return list(Module.objects.order_by('name'))
