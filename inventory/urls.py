"""
URL routing for inventory API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    path('inventory/', views.InventoryListCreateView.as_view(), name='item-list'),
    path('inventory/search/', views.InventorySearchView.as_view(), name='item-search'),
    path('inventory/<int:pk>/', views.InventoryDetailView.as_view(), name='item-detail'),
]
