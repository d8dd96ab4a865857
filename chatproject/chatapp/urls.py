from django.urls import path
from . import views

urlpatterns = [
    path('conversations/', views.conversation_list, name='conversation_list'),
    path('conversations/<str:conversation_id>/', views.conversation_detail, name='conversation_detail'),
    path('personas/', views.persona_list, name='persona_list'),
]
