"""
Studyfeed App Configuration
"""
from django.apps import AppConfig


class StudyfeedConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'studyfeed'
    verbose_name = 'Studygram feed'
