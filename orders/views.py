"""
Order API Views.

Implements:
- GET /orders/ - List orders (whole-collection cache)
- POST /orders/ - Create an order
- GET/PATCH/DELETE /orders/{id}/ - Order detail, update, cascade delete
- GET /orders/{id}/items/ - Items linked to the order
- PUT/DELETE /orders/{id}/items/{item_id}/ - Link or unlink an item (idempotent)
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import OrderWriteSerializer
from .services import AssociationManager, OrderService

logger = logging.getLogger(__name__)


class OrderListCreateView(APIView):
    """
    GET: List all orders
    POST: Create a new order

    Request Body (POST):
    {
        "customer_name": "Acme Ltd",
        "date_placed": "2024-01-01T12:00:00Z"
    }
    Both fields are optional; the customer defaults to "unknown".
    """

    def get(self, request):
        return Response(OrderService().list_orders())

    def post(self, request):
        serializer = OrderWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = OrderService().create_order(**serializer.validated_data)
        return Response(order, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    """
    GET: Retrieve an order
    PATCH: Update customer name or date placed
    DELETE: Delete the order and its item links (items are kept)
    """

    def get(self, request, pk):
        return Response(OrderService().get_order(pk))

    def patch(self, request, pk):
        serializer = OrderWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = OrderService().update_order(pk, **serializer.validated_data)
        return Response(order)

    def delete(self, request, pk):
        OrderService().delete_order(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class OrderItemListView(APIView):
    """GET: Items linked to an order."""

    def get(self, request, pk):
        return Response(AssociationManager().order_items(pk))


class OrderItemLinkView(APIView):
    """
    PUT: Link an item to the order (201 if created, 200 if already linked)
    DELETE: Unlink an item from the order (204 whether or not it was linked)
    """

    def put(self, request, pk, item_id):
        created = AssociationManager().add_item(pk, item_id)
        return Response(
            {'order_id': pk, 'item_id': item_id, 'created': created},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )

    def delete(self, request, pk, item_id):
        removed = AssociationManager().remove_item(pk, item_id)
        if not removed:
            logger.debug(f"Unlink of item #{item_id} from order #{pk} was a no-op")
        return Response(status=status.HTTP_204_NO_CONTENT)
