from django.db.models import F, Q
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import filters, mixins, permissions, serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .exceptions import ActionForbidden
from .models import Auction, Bid, Category, Notification
from .permissions import IsRecipient, IsSellerOrAdmin
from .serializers import (
    AuctionCreateSerializer,
    AuctionDetailSerializer,
    AuctionFilterSerializer,
    AuctionListSerializer,
    AuctionUpdateSerializer,
    BidCreateSerializer,
    BidSerializer,
    CategorySerializer,
    NotificationSerializer,
    PlaceBidSerializer,
)
from .services import build_services
from .store import AuctionStore

bid_placed_response = openapi.Response(
    'Bid committed',
    schema=openapi.Schema(
        type=openapi.TYPE_OBJECT,
        properties={
            'message': openapi.Schema(type=openapi.TYPE_STRING),
            'bid': openapi.Schema(type=openapi.TYPE_OBJECT),
            'auction': openapi.Schema(type=openapi.TYPE_OBJECT),
        },
    ),
)


def bid_placed(result):
    return Response(
        {
            'message': 'Bid placed successfully',
            'bid': BidSerializer(result.bid).data,
            'auction': AuctionDetailSerializer(result.auction).data,
        },
        status=status.HTTP_201_CREATED,
    )


class CategoryViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    """
    API endpoint for auction categories. Anyone can browse; staff can add.
    """
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    pagination_class = None
    lookup_field = 'slug'

    def get_permissions(self):
        if self.action == 'create':
            permission_classes = [permissions.IsAdminUser]
        else:
            permission_classes = [permissions.AllowAny]
        return [permission() for permission in permission_classes]


class AuctionViewSet(viewsets.ModelViewSet):
    """
    API endpoint for auctions, their bids and their lifecycle.
    """
    queryset = Auction.objects.select_related('seller', 'category')
    lookup_value_regex = r'\d+'
    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['title', 'description']
    ordering_fields = ['created_at', 'end_time', 'current_price', 'total_bids']
    ordering = ['-created_at']

    def get_serializer_class(self):
        if self.action == 'create':
            return AuctionCreateSerializer
        elif self.action in ['update', 'partial_update']:
            return AuctionUpdateSerializer
        elif self.action == 'retrieve':
            return AuctionDetailSerializer
        elif self.action == 'bids':
            return BidSerializer
        elif self.action == 'place_bid':
            return PlaceBidSerializer
        return AuctionListSerializer

    def get_permissions(self):
        """
        - List, retrieve and bid history: anyone
        - Update and delete: only the seller or an admin
        - Everything else (create, bidding, lifecycle): authenticated users;
          the lifecycle controller checks that the caller is the seller.
        """
        if self.action in ['list', 'retrieve', 'bids']:
            permission_classes = [permissions.AllowAny]
        elif self.action in ['update', 'partial_update', 'destroy']:
            permission_classes = [permissions.IsAuthenticated, IsSellerOrAdmin]
        else:
            permission_classes = [permissions.IsAuthenticated]
        return [permission() for permission in permission_classes]

    def get_queryset(self):
        """
        DRAFT auctions are only visible to their seller (and staff).

        The list is filtered by query parameters:
        - status: DRAFT, ACTIVE, ENDED or CANCELLED (ACTIVE when omitted)
        - category: category slug
        - seller: seller id
        - min_price / max_price: bounds on the current price
        - my: only the caller's listings, in any status (if true)
        - won: only ended auctions where the caller holds the winning bid (if true)
        """
        queryset = super().get_queryset()
        user = self.request.user

        if not user.is_staff:
            drafts = Q(status=Auction.Status.DRAFT)
            if user.is_authenticated:
                queryset = queryset.filter(~drafts | Q(seller=user))
            else:
                queryset = queryset.exclude(drafts)

        if self.action != 'list':
            return queryset

        params = AuctionFilterSerializer(data=self.request.query_params)
        params.is_valid(raise_exception=True)
        query = params.validated_data
        mine = query['my'] and user.is_authenticated
        won = query['won'] and user.is_authenticated

        if 'status' in query:
            queryset = queryset.filter(status=query['status'])
        elif not (mine or won):
            queryset = queryset.filter(status=Auction.Status.ACTIVE)

        if 'category' in query:
            queryset = queryset.filter(category__slug=query['category'])

        if 'seller' in query:
            queryset = queryset.filter(seller_id=query['seller'])

        if 'min_price' in query:
            queryset = queryset.filter(current_price__gte=query['min_price'])
        if 'max_price' in query:
            queryset = queryset.filter(current_price__lte=query['max_price'])

        if mine:
            queryset = queryset.filter(seller=user)

        if won:
            queryset = queryset.filter(
                status=Auction.Status.ENDED,
                bids__bidder=user,
                bids__is_winning=True,
            )

        return queryset

    def get_services(self):
        if not hasattr(self, '_services'):
            self._services = build_services()
        return self._services

    def retrieve(self, request, *args, **kwargs):
        """
        Auction detail. Viewing counts towards ``views`` and ends the auction
        first if its deadline passed without being observed.
        """
        _, lifecycle = self.get_services()
        auction = lifecycle.expire_if_due(self.get_object())
        Auction.objects.filter(pk=auction.pk).update(views=F('views') + 1)
        auction.refresh_from_db()
        serializer = self.get_serializer(auction)
        return Response(serializer.data)

    def perform_destroy(self, instance):
        AuctionStore().delete_auction(instance.pk)

    def _lifecycle_response(self, auction, message):
        return Response({
            'message': message,
            'auction': AuctionDetailSerializer(auction).data,
        })

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        _, lifecycle = self.get_services()
        auction = lifecycle.start(pk, request.user.id)
        return self._lifecycle_response(auction, 'Auction started successfully')

    @action(detail=True, methods=['post'])
    def end(self, request, pk=None):
        _, lifecycle = self.get_services()
        auction = lifecycle.end(pk, request.user.id)
        return self._lifecycle_response(auction, 'Auction ended successfully')

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        _, lifecycle = self.get_services()
        auction = lifecycle.cancel(pk, request.user.id)
        return self._lifecycle_response(auction, 'Auction cancelled successfully')

    @swagger_auto_schema(
        request_body=PlaceBidSerializer,
        responses={
            201: bid_placed_response,
            400: 'Rejected - auction not active, expired or bid below the minimum',
            403: 'Rejected - sellers cannot bid on their own auction',
            404: 'Auction not found',
            409: 'Lost a race with a concurrent bid - refresh and retry',
        },
        operation_description="Place a bid on a specific auction",
    )
    @action(detail=True, methods=['post'])
    def place_bid(self, request, pk=None):
        """
        Place a bid on a specific auction.
        """
        serializer = PlaceBidSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        engine, _ = self.get_services()
        result = engine.place_bid(pk, request.user.id, serializer.validated_data['amount'])
        return bid_placed(result)

    @action(detail=True, methods=['get'])
    def bids(self, request, pk=None):
        """
        Bid history for a specific auction, newest first.
        """
        auction = self.get_object()
        queryset = auction.bids.select_related('bidder')
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(BidSerializer(page, many=True).data)
        return Response(BidSerializer(queryset, many=True).data)

    @action(detail=True, methods=['get'])
    def analytics(self, request, pk=None):
        """
        Seller-only bidding statistics for an auction.
        """
        auction = self.get_object()
        if auction.seller_id != request.user.id and not request.user.is_staff:
            raise ActionForbidden()
        history = auction.bids.select_related('bidder').order_by('created_at', 'id')
        unique_bidders = history.order_by().values('bidder_id').distinct().count()
        return Response({
            'analytics': {
                'total_bids': auction.total_bids,
                'unique_bidders': unique_bidders,
                'views': auction.views,
                'reserve_met': auction.reserve_met,
                'bid_history': BidSerializer(history, many=True).data,
            }
        })


class BidViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoint for bids.
    Users can only view their own bids unless they're an admin.
    Bids cannot be modified or deleted once placed.
    """
    queryset = Bid.objects.select_related('bidder', 'auction')
    serializer_class = BidSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        """
        Filter bids based on query parameters and user:
        - auction: Filter by auction ID
        - Non-admin users can only see their own bids
        """
        user = self.request.user
        queryset = super().get_queryset()

        if self.request.query_params.get('auction'):
            try:
                auction_id = serializers.IntegerField(min_value=1).run_validation(
                    self.request.query_params['auction']
                )
            except serializers.ValidationError as exc:
                raise serializers.ValidationError({'auction': exc.detail})
            queryset = queryset.filter(auction_id=auction_id)

        if not user.is_staff:
            queryset = queryset.filter(bidder=user)

        return queryset

    @swagger_auto_schema(
        request_body=BidCreateSerializer,
        responses={201: bid_placed_response},
        operation_description="Place a bid, naming the auction in the request body",
    )
    def create(self, request, *args, **kwargs):
        serializer = BidCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        engine, _ = build_services()
        result = engine.place_bid(
            serializer.validated_data['auction_id'],
            request.user.id,
            serializer.validated_data['amount'],
        )
        return bid_placed(result)

    @action(detail=False, methods=['get'])
    def winning(self, request):
        """
        Bids of the current user that are currently the highest on their auction.
        """
        queryset = Bid.objects.filter(bidder=request.user, is_winning=True).select_related('auction')
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(BidSerializer(page, many=True).data)
        return Response(BidSerializer(queryset, many=True).data)


class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoint for the current user's notifications.
    """
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated, IsRecipient]

    def get_queryset(self):
        queryset = Notification.objects.filter(user=self.request.user)
        if self.request.query_params.get('unread', '').lower() == 'true':
            queryset = queryset.filter(is_read=False)
        return queryset

    @action(detail=True, methods=['post'])
    def mark_read(self, request, pk=None):
        notification = self.get_object()
        notification.is_read = True
        notification.save(update_fields=['is_read'])
        return Response(self.get_serializer(notification).data)

    @action(detail=False, methods=['post'])
    def mark_all_read(self, request):
        updated = self.get_queryset().filter(is_read=False).update(is_read=True)
        return Response({'updated': updated})
