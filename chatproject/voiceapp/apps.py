from django.apps import AppConfig


class VoiceappConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'voiceapp'
