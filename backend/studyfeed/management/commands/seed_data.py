"""
Management command to seed the database with sample data.

Usage: python manage.py seed_data
"""

import random
from datetime import timedelta
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from django.utils import timezone

from studyfeed.models import Module, Post, Comment, Like
from studyfeed.services import toggle_like


MODULES = [
    ('Analysis I', 8, 'Mathematics'),
    ('Linear Algebra', 8, 'Mathematics'),
    ('Statistics', 5, 'Mathematics'),
    ('Programming 1', 6, 'Computer Science'),
    ('Databases', 5, 'Computer Science'),
    ('Software Engineering', 6, 'Computer Science'),
    ('Business Administration', 5, 'Economics'),
    ('Accounting', 5, 'Economics'),
]


class Command(BaseCommand):
    help = 'Seed the database with sample data for testing'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of users to create'
        )
        parser.add_argument(
            '--posts',
            type=int,
            default=20,
            help='Number of posts to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=60,
            help='Number of comments to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            Like.objects.all().delete()
            Comment.objects.all().delete()
            Post.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating modules...')
        modules = self._create_modules()

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])

        self.stdout.write('Creating posts...')
        posts = self._create_posts(users, modules, options['posts'])

        self.stdout.write('Creating comments...')
        comments = self._create_comments(users, posts, options['comments'])

        self.stdout.write('Creating likes...')
        like_count = self._create_likes(users, posts)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(modules)} modules\n'
            f'  - {len(users)} users\n'
            f'  - {len(posts)} posts\n'
            f'  - {len(comments)} comments\n'
            f'  - {like_count} likes'
        ))

    def _create_modules(self):
        modules = []
        for name, credits, module_type in MODULES:
            module, _created = Module.objects.get_or_create(
                name=name,
                defaults={'ects_credits': credits, 'type': module_type}
            )
            modules.append(module)
        return modules

    def _create_users(self, count):
        users = []
        first_names = ['Sarah', 'Alex', 'Michael', 'Lena', 'Jonas', 'Mia', 'Paul', 'Emma']
        last_names = ['Johnson', 'Chen', 'Wong', 'Schmidt', 'Weber', 'Fischer']
        for i in range(count):
            email = f'student{i+1}@example.com'
            user = User.objects.filter(email=email).first()
            if user is None:
                user = User.objects.create_user(
                    username=email,
                    email=email,
                    password='password123',
                    first_name=random.choice(first_names),
                    last_name=random.choice(last_names),
                )
            users.append(user)
        return users

    def _create_posts(self, users, modules, count):
        posts = []
        titles = [
            "Lecture notes week",
            "Exam preparation summary",
            "Solutions to exercise sheet",
            "Cheatsheet",
            "Past exam with solutions",
            "Mind map for chapter",
        ]

        for i in range(count):
            post = Post.objects.create(
                author=random.choice(users),
                module=random.choice(modules),
                title=f"{random.choice(titles)} #{i+1}",
                created_at=timezone.now() - timedelta(hours=random.randint(0, 72))
            )
            posts.append(post)
        return posts

    def _create_comments(self, users, posts, count):
        comments = []
        comment_texts = [
            "Thanks for sharing!",
            "This saved my exam prep.",
            "Is there a solution for task 3?",
            "Great summary, very clear.",
            "Could you upload the slides as well?",
        ]

        for i in range(count):
            comment = Comment.objects.create(
                post=random.choice(posts),
                author=random.choice(users),
                content=random.choice(comment_texts),
                created_at=timezone.now() - timedelta(hours=random.randint(0, 48))
            )
            comments.append(comment)
        return comments

    def _create_likes(self, users, posts):
        created = 0
        for post in posts:
            likers = random.sample(users, k=random.randint(0, len(users)))
            for liker in likers:
                result = toggle_like(post.id, liker)
                if result.success and result.data['liked']:
                    created += 1
        return created
