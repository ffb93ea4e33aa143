"""
Django Admin Configuration for Studyfeed Models
"""
from django.contrib import admin
from .models import Module, Post, PostFile, Like, Comment


@admin.register(Module)
class ModuleAdmin(admin.ModelAdmin):
    list_display = ['name', 'type', 'ects_credits']
    list_filter = ['type']
    search_fields = ['name']


class PostFileInline(admin.TabularInline):
    model = PostFile
    extra = 0
    readonly_fields = ['file_name', 'file_path', 'file_url', 'file_type', 'file_size', 'version', 'uploaded_at']


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['title', 'module', 'author', 'created_at']
    list_filter = ['module', 'created_at']
    search_fields = ['title', 'author__email']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [PostFileInline]


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'post', 'author', 'created_at']
    list_filter = ['created_at']
    search_fields = ['content', 'author__email']
    readonly_fields = ['post', 'author', 'content', 'created_at']

    def has_change_permission(self, request, obj=None):
        # Comments are immutable
        return False


@admin.register(Like)
class LikeAdmin(admin.ModelAdmin):
    list_display = ['user', 'post', 'created_at']
    list_filter = ['created_at']
    search_fields = ['user__email']
