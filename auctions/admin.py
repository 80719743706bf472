from django.contrib import admin

from .models import Auction, Bid, Category, Notification


class BidInline(admin.TabularInline):
    model = Bid
    fields = ('bidder', 'amount', 'is_winning', 'created_at')
    readonly_fields = ('bidder', 'amount', 'is_winning', 'created_at')
    extra = 0
    can_delete = False
    ordering = ('-created_at',)

    def has_add_permission(self, request, obj=None):
        # Bids are only created through the bidding engine
        return False


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug')
    prepopulated_fields = {'slug': ('name',)}


@admin.register(Auction)
class AuctionAdmin(admin.ModelAdmin):
    list_display = ('title', 'seller', 'starting_price', 'current_price', 'total_bids', 'status', 'end_time')
    list_filter = ('status', 'category', 'created_at', 'end_time')
    search_fields = ('title', 'description', 'seller__username')
    readonly_fields = ('current_price', 'total_bids', 'status', 'start_time', 'views', 'created_at', 'updated_at')
    date_hierarchy = 'created_at'
    inlines = [BidInline]

    fieldsets = (
        ('Basic Information', {
            'fields': ('title', 'description', 'seller', 'category', 'condition', 'location')
        }),
        ('Pricing', {
            'fields': ('starting_price', 'current_price', 'reserve_price', 'min_bid_increment', 'shipping_cost')
        }),
        ('Auction Timing', {
            'fields': ('status', 'start_time', 'end_time', 'auto_extend')
        }),
        ('Activity', {
            'fields': ('total_bids', 'views')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def has_change_permission(self, request, obj=None):
        # Ended and cancelled auctions are final
        if obj and obj.status in Auction.TERMINAL_STATUSES:
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj and obj.total_bids > 0:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(Bid)
class BidAdmin(admin.ModelAdmin):
    list_display = ('id', 'auction', 'bidder', 'amount', 'is_winning', 'created_at')
    list_filter = ('is_winning', 'created_at')
    search_fields = ('auction__title', 'bidder__username')
    readonly_fields = ('auction', 'bidder', 'amount', 'is_winning', 'created_at')
    date_hierarchy = 'created_at'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        # Bids cannot be edited after creation
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'type', 'auction', 'is_read', 'created_at')
    list_filter = ('type', 'is_read')
    search_fields = ('user__username', 'title')
