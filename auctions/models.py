from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


def default_min_bid_increment():
    return settings.AUCTION_DEFAULT_MIN_BID_INCREMENT


class Category(models.Model):
    name = models.CharField(max_length=100, unique=True)
    slug = models.SlugField(max_length=100, unique=True)
    description = models.TextField(blank=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'categories'

    def __str__(self):
        return self.name


class Auction(models.Model):
    class Status(models.TextChoices):
        DRAFT = 'DRAFT', 'Draft'
        ACTIVE = 'ACTIVE', 'Active'
        ENDED = 'ENDED', 'Ended'
        CANCELLED = 'CANCELLED', 'Cancelled'

    class Condition(models.TextChoices):
        NEW = 'new', 'New'
        LIKE_NEW = 'like_new', 'Like new'
        GOOD = 'good', 'Good'
        FAIR = 'fair', 'Fair'
        POOR = 'poor', 'Poor'

    TERMINAL_STATUSES = (Status.ENDED, Status.CANCELLED)

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='auctions',
    )
    category = models.ForeignKey(
        Category,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='auctions',
    )
    title = models.CharField(max_length=200)
    description = models.TextField()
    condition = models.CharField(max_length=10, choices=Condition.choices, blank=True)
    location = models.CharField(max_length=100, blank=True)
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    starting_price = models.DecimalField(
        max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal('0.00'))]
    )
    current_price = models.DecimalField(max_digits=12, decimal_places=2)
    reserve_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    min_bid_increment = models.DecimalField(
        max_digits=12, decimal_places=2, default=default_min_bid_increment
    )
    total_bids = models.PositiveIntegerField(default=0)

    status = models.CharField(max_length=10, choices=Status.choices, default=Status.DRAFT)
    start_time = models.DateTimeField(null=True, blank=True)
    end_time = models.DateTimeField()
    # Stored for listings; the bid commit path does not extend end_time.
    auto_extend = models.BooleanField(default=False)
    views = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='auction_status_idx'),
            models.Index(fields=['end_time'], name='auction_end_time_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(current_price__gte=F('starting_price')),
                name='auction_current_price_gte_starting_price',
            ),
        ]

    def __str__(self):
        return f"{self.title} (Status: {self.status})"

    def clean(self):
        if self.min_bid_increment is not None and \
                self.min_bid_increment < settings.AUCTION_MIN_BID_INCREMENT_FLOOR:
            raise ValidationError(
                f"Minimum bid increment must be at least {settings.AUCTION_MIN_BID_INCREMENT_FLOOR}"
            )
        if self.reserve_price is not None and self.starting_price is not None \
                and self.reserve_price < self.starting_price:
            raise ValidationError("Reserve price cannot be below the starting price")

    def save(self, *args, **kwargs):
        if not self.pk and self.current_price is None:
            self.current_price = self.starting_price
        super().save(*args, **kwargs)

    @property
    def minimum_bid(self):
        return self.current_price + self.min_bid_increment

    @property
    def is_active(self):
        return self.status == self.Status.ACTIVE and self.end_time > timezone.now()

    @property
    def is_due(self):
        """Active but past its deadline, waiting for the ENDED transition."""
        return self.status == self.Status.ACTIVE and self.end_time <= timezone.now()

    @property
    def reserve_met(self):
        if self.reserve_price is None:
            return None
        return self.current_price >= self.reserve_price

    @property
    def winning_bid(self):
        return self.bids.filter(is_winning=True).select_related('bidder').first()


class Bid(models.Model):
    auction = models.ForeignKey(Auction, on_delete=models.PROTECT, related_name='bids')
    bidder = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='bids',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    is_winning = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now, editable=False, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['auction', 'amount'], name='bid_auction_amount_idx'),
            models.Index(fields=['bidder'], name='bid_bidder_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['auction'],
                condition=Q(is_winning=True),
                name='unique_winning_bid_per_auction',
            ),
        ]

    def __str__(self):
        return f"Bid of {self.amount} by {self.bidder_id} on auction {self.auction_id}"


class Notification(models.Model):
    class Type(models.TextChoices):
        BID_PLACED = 'BID_PLACED', 'Bid placed'
        BID_OUTBID = 'BID_OUTBID', 'Outbid'
        AUCTION_WON = 'AUCTION_WON', 'Auction won'
        AUCTION_CANCELLED = 'AUCTION_CANCELLED', 'Auction cancelled'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='notifications',
    )
    auction = models.ForeignKey(
        Auction,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications',
    )
    type = models.CharField(max_length=20, choices=Type.choices)
    title = models.CharField(max_length=200)
    message = models.TextField()
    data = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'is_read'], name='notification_user_read_idx'),
        ]

    def __str__(self):
        return f"{self.type} for user {self.user_id}"
