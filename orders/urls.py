"""
URL routing for order API endpoints.
"""
from django.urls import path
from . import views

app_name = 'orders'

urlpatterns = [
    path('orders/', views.OrderListCreateView.as_view(), name='order-list'),
    path('orders/<int:pk>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:pk>/items/', views.OrderItemListView.as_view(), name='order-items'),
    path('orders/<int:pk>/items/<int:item_id>/', views.OrderItemLinkView.as_view(), name='order-item-link'),
]
