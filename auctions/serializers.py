from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone
from django.utils.text import slugify
from rest_framework import serializers

from .exceptions import InvalidState
from .models import Auction, Bid, Category, Notification


def format_time_left(auction):
    if auction.status == Auction.Status.DRAFT:
        return "Auction not started yet"
    if auction.status == Auction.Status.CANCELLED:
        return "Auction cancelled"
    if auction.status == Auction.Status.ENDED:
        return "Auction ended"

    now = timezone.now()
    if now >= auction.end_time:
        return "Auction ended"

    time_left = auction.end_time - now
    days = time_left.days
    hours, remainder = divmod(time_left.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    else:
        return f"{minutes}m {seconds}s"


class UserSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = get_user_model()
        fields = ['id', 'username']
        read_only_fields = fields


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ['id', 'name', 'slug', 'description']
        extra_kwargs = {'slug': {'required': False}}

    def validate(self, attrs):
        if not attrs.get('slug') and attrs.get('name'):
            attrs['slug'] = slugify(attrs['name'])
            if Category.objects.filter(slug=attrs['slug']).exists():
                raise serializers.ValidationError({'slug': 'A category with this slug already exists.'})
        return attrs


class BidSerializer(serializers.ModelSerializer):
    bidder_username = serializers.ReadOnlyField(source='bidder.username')

    class Meta:
        model = Bid
        fields = ['id', 'auction', 'bidder', 'bidder_username', 'amount', 'is_winning', 'created_at']
        read_only_fields = fields


class PlaceBidSerializer(serializers.Serializer):
    """Shape check only; auction rules are enforced by the bidding engine."""
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))


class BidCreateSerializer(PlaceBidSerializer):
    auction_id = serializers.IntegerField(min_value=1)


class AuctionFilterSerializer(serializers.Serializer):
    """Query parameters accepted by the auction list."""
    status = serializers.CharField(required=False)
    category = serializers.SlugField(required=False)
    seller = serializers.IntegerField(required=False, min_value=1)
    min_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=Decimal('0'))
    max_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=Decimal('0'))
    my = serializers.BooleanField(required=False, default=False)
    won = serializers.BooleanField(required=False, default=False)

    def validate_status(self, value):
        value = value.upper()
        if value not in Auction.Status.values:
            raise serializers.ValidationError(
                f"Must be one of: {', '.join(Auction.Status.values)}."
            )
        return value

    def validate(self, attrs):
        low, high = attrs.get('min_price'), attrs.get('max_price')
        if low is not None and high is not None and low > high:
            raise serializers.ValidationError({'max_price': 'Must not be below min_price.'})
        return attrs


class AuctionEventSerializer(serializers.ModelSerializer):
    """Auction aggregate carried by real-time events."""
    minimum_bid = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Auction
        fields = [
            'id', 'seller', 'status', 'current_price', 'min_bid_increment', 'minimum_bid',
            'total_bids', 'start_time', 'end_time', 'updated_at',
        ]
        read_only_fields = fields


class AuctionListSerializer(serializers.ModelSerializer):
    seller_username = serializers.ReadOnlyField(source='seller.username')
    category = serializers.SlugRelatedField(slug_field='slug', read_only=True)
    minimum_bid = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    time_left = serializers.SerializerMethodField()

    class Meta:
        model = Auction
        fields = [
            'id', 'title', 'category', 'starting_price', 'current_price', 'minimum_bid',
            'seller', 'seller_username', 'start_time', 'end_time', 'status', 'total_bids',
            'time_left',
        ]
        read_only_fields = fields

    def get_time_left(self, obj):
        return format_time_left(obj)


class AuctionDetailSerializer(AuctionListSerializer):
    bids = BidSerializer(many=True, read_only=True)
    winning_bid = BidSerializer(read_only=True)
    reserve_met = serializers.BooleanField(read_only=True, allow_null=True)

    class Meta(AuctionListSerializer.Meta):
        fields = AuctionListSerializer.Meta.fields + [
            'description', 'condition', 'location', 'shipping_cost', 'reserve_price',
            'reserve_met', 'min_bid_increment', 'auto_extend', 'views', 'created_at',
            'updated_at', 'winning_bid', 'bids',
        ]
        read_only_fields = fields


class AuctionWriteSerializer(serializers.ModelSerializer):
    category = serializers.SlugRelatedField(
        slug_field='slug', queryset=Category.objects.all(), required=False, allow_null=True
    )

    class Meta:
        model = Auction
        fields = [
            'id', 'title', 'description', 'category', 'condition', 'location', 'shipping_cost',
            'starting_price', 'reserve_price', 'min_bid_increment', 'end_time', 'auto_extend',
            'status',
        ]
        read_only_fields = ['id', 'status']

    def validate_end_time(self, value):
        if value <= timezone.now():
            raise serializers.ValidationError("End time must be in the future")
        return value

    def validate_min_bid_increment(self, value):
        floor = settings.AUCTION_MIN_BID_INCREMENT_FLOOR
        if value < floor:
            raise serializers.ValidationError(f"Minimum bid increment must be at least {floor}")
        return value

    def validate(self, data):
        starting_price = data.get('starting_price', getattr(self.instance, 'starting_price', None))
        reserve_price = data.get('reserve_price', getattr(self.instance, 'reserve_price', None))
        if starting_price is not None and starting_price < 0:
            raise serializers.ValidationError("Starting price cannot be negative")
        if reserve_price is not None and starting_price is not None and reserve_price < starting_price:
            raise serializers.ValidationError("Reserve price cannot be below the starting price")
        return data


class AuctionCreateSerializer(AuctionWriteSerializer):
    def create(self, validated_data):
        validated_data['seller'] = self.context['request'].user
        validated_data['current_price'] = validated_data['starting_price']
        validated_data['status'] = Auction.Status.DRAFT
        return super().create(validated_data)


class AuctionUpdateSerializer(AuctionWriteSerializer):
    """Listings can only be edited before they go live."""

    def validate(self, data):
        if self.instance is not None and self.instance.status != Auction.Status.DRAFT:
            raise InvalidState('edit', self.instance.status)
        return super().validate(data)

    def update(self, instance, validated_data):
        if 'starting_price' in validated_data:
            validated_data['current_price'] = validated_data['starting_price']
        return super().update(instance, validated_data)


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ['id', 'auction', 'type', 'title', 'message', 'data', 'is_read', 'created_at']
        read_only_fields = ['id', 'auction', 'type', 'title', 'message', 'data', 'created_at']
