# FILE: chatproject/chatapp/models.py
from django.db import models
from django.utils import timezone
import uuid


class Conversation(models.Model):
    """A saved chat transcript; title is derived from its messages on every save."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=80, default="New Conversation")
    persona = models.CharField(max_length=32, default="general")
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-updated_at']

    def __str__(self):
        return f"{self.title} ({self.id})"


class Message(models.Model):
    """Represents a single message (user or AI) within a conversation."""
    ROLE_CHOICES = [
        ('user', 'User'),
        ('assistant', 'Assistant'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name='messages')
    role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    content = models.TextField()
    persona = models.CharField(max_length=32)
    created_at = models.DateTimeField(default=timezone.now)
    position = models.PositiveIntegerField(default=0)
    media_preview = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ['created_at', 'position']

    def __str__(self):
        return f"{self.role}: {self.content[:50]}..."
