"""
Inventory API Views backed by the cached inventory service.

Implements:
- GET /inventory/ - All items (whole-collection cache)
- POST /inventory/ - Create an item (client-supplied ids are ignored)
- GET/PATCH/DELETE /inventory/{id}/ - Single item (entity cache)
- GET /inventory/search/?searchTerm= - Substring search on name and location

Service errors are mapped to responses by core.exceptions.api_exception_handler.
"""
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import InventoryItemSerializer, InventoryItemUpdateSerializer
from .services import InventoryService


class InventoryServiceMixin:
    def get_service(self) -> InventoryService:
        return InventoryService()


class InventoryListCreateView(InventoryServiceMixin, APIView):
    """
    GET: List all inventory items
    POST: Create a new inventory item
    """

    def get(self, request):
        return Response(self.get_service().list_items())

    def post(self, request):
        serializer = InventoryItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = self.get_service().create_item(**serializer.validated_data)
        return Response(item, status=status.HTTP_201_CREATED)


class InventoryDetailView(InventoryServiceMixin, APIView):
    """
    GET: Retrieve an inventory item
    PATCH: Update quantity, location, price or name
    DELETE: Delete an item and its order links
    """

    def get(self, request, pk):
        return Response(self.get_service().get_item(pk))

    def patch(self, request, pk):
        serializer = InventoryItemUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = self.get_service().update_item(pk, **serializer.validated_data)
        return Response(item)

    def delete(self, request, pk):
        self.get_service().delete_item(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class InventorySearchView(InventoryServiceMixin, APIView):
    """
    GET: Search items by substring on name or location.

    Query Parameters:
        - searchTerm (or q): Term to search for (required)

    Returns 404 when nothing matches.
    """

    def get(self, request):
        term = request.query_params.get('searchTerm') or request.query_params.get('q', '')
        if not term.strip():
            return Response(
                {'error': 'Validation Error', 'detail': 'Invalid search term.'},
                status=status.HTTP_400_BAD_REQUEST
            )

        items = self.get_service().search_items(term)
        if not items:
            return Response(
                {'error': 'Not Found', 'detail': f"No items match '{term.strip()}'"},
                status=status.HTTP_404_NOT_FOUND
            )
        return Response(items)
