"""
Studyfeed App URL Configuration
"""
from django.urls import path
from .views import (
    FeedView,
    PostCreateView,
    PostDetailView,
    LikePostView,
    CommentListCreateView,
    FileDownloadView,
    ModuleListView,
    RegisterView,
    LoginView,
    LogoutView,
    WhoAmIView,
    ProfileView,
    MyPostsView,
)

urlpatterns = [
    # Feed
    path('feed/', FeedView.as_view(), name='feed'),

    # Posts
    path('posts/', PostCreateView.as_view(), name='post-create'),
    path('posts/<int:post_id>/', PostDetailView.as_view(), name='post-detail'),
    path('posts/<int:post_id>/like/', LikePostView.as_view(), name='like-post'),
    path('posts/<int:post_id>/comments/', CommentListCreateView.as_view(), name='post-comments'),

    # Files
    path('files/<int:file_id>/download/', FileDownloadView.as_view(), name='file-download'),

    # Modules
    path('modules/', ModuleListView.as_view(), name='modules'),

    # Auth
    path('auth/register/', RegisterView.as_view(), name='register'),
    path('auth/login/', LoginView.as_view(), name='login'),
    path('auth/logout/', LogoutView.as_view(), name='logout'),
    path('auth/whoami/', WhoAmIView.as_view(), name='whoami'),

    # Profile
    path('me/', ProfileView.as_view(), name='profile'),
    path('me/posts/', MyPostsView.as_view(), name='my-posts'),
]
