from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, Numeric, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(**kwargs):
    return Field(default_factory=utcnow, sa_type=DateTime(timezone=True), **kwargs)


def _money(**kwargs):
    return Field(default=Decimal("0"), sa_type=Numeric(10, 2), **kwargs)


# ============ ENUMS ============

class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    cooking = "cooking"
    ready = "ready"
    served = "served"
    completed = "completed"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"

    @classmethod
    def _missing_(cls, value):
        # Older call sites stored "completed" for a successful payment
        if isinstance(value, str) and value.lower() == "completed":
            return cls.paid
        return None


class PaymentProvider(str, Enum):
    cash = "cash"
    razorpay = "razorpay"
    stripe = "stripe"


class PaymentMethod(str, Enum):
    cash = "cash"
    online = "online"


class SourceType(str, Enum):
    table = "table"
    zomato = "zomato"
    swiggy = "swiggy"


class OrderItemStatus(str, Enum):
    pending = "pending"
    ready = "ready"
    completed = "completed"
    cancelled = "cancelled"


class AgingLevel(str, Enum):
    fresh = "fresh"
    warning = "warning"
    critical = "critical"

    @property
    def severity(self) -> int:
        return _AGING_SEVERITY[self]


_AGING_SEVERITY = {AgingLevel.fresh: 0, AgingLevel.warning: 1, AgingLevel.critical: 2}


class TableState(str, Enum):
    """Cached two-value state persisted on the table row."""
    available = "available"
    occupied = "occupied"


class TableStatus(str, Enum):
    """Live floor-plan status derived from active orders."""
    available = "available"
    pending_orders = "pending_orders"
    ready_orders = "ready_orders"
    processing_orders = "processing_orders"


# ============ TABLES ============

class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    slug: str = Field(unique=True, index=True)  # Used in QR links: /public/menu/{slug}/{table}
    address: str | None = None
    contact_phone: str | None = None
    is_active: bool = Field(default=True, index=True)  # Soft delete flag
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class TenantMixin(SQLModel):
    tenant_id: int = Field(foreign_key="tenants.id", ondelete="CASCADE", index=True)


class RestaurantTable(TenantMixin, table=True):
    __tablename__ = "restaurant_tables"
    __table_args__ = (UniqueConstraint("tenant_id", "identifier"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str  # e.g., "Table 5"
    identifier: str  # Printed on the QR code, e.g., "T5"
    qr_url: str | None = None
    is_active: bool = Field(default=True)

    # Derived from active orders by occupancy.refresh_counts; not authoritative
    current_status: TableState = Field(default=TableState.available)
    active_orders_count: int = Field(default=0)
    last_order_time: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))

    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class MenuCategory(TenantMixin, table=True):
    __tablename__ = "menu_categories"

    id: int | None = Field(default=None, primary_key=True)
    name: str
    sort_order: int = Field(default=0)
    is_active: bool = Field(default=True)


class MenuItem(TenantMixin, table=True):
    __tablename__ = "menu_items"

    id: int | None = Field(default=None, primary_key=True)
    category_id: int = Field(foreign_key="menu_categories.id", ondelete="CASCADE", index=True)
    name: str
    description: str | None = None
    price: Decimal = _money()
    is_available: bool = Field(default=True)
    is_veg: bool = Field(default=True)
    is_spicy: bool = Field(default=False)


class Order(TenantMixin, table=True):
    __tablename__ = "orders"

    id: int | None = Field(default=None, primary_key=True)
    table_id: int | None = Field(default=None, foreign_key="restaurant_tables.id", ondelete="SET NULL", index=True)
    source_type: SourceType = Field(default=SourceType.table)
    source_reference: str | None = None  # Table identifier or aggregator order ref

    status: OrderStatus = Field(default=OrderStatus.pending, index=True)
    status_changed_at: datetime = _timestamp()
    aging_level: AgingLevel | None = None  # Denormalized by aging.refresh_aging_levels

    payment_status: PaymentStatus = Field(default=PaymentStatus.pending, index=True)
    payment_provider: PaymentProvider | None = None
    payment_order_id: str | None = Field(default=None, index=True)  # Gateway-assigned order id
    payment_id: str | None = None

    total_amount: Decimal = _money()
    tax_amount: Decimal = _money()
    discount_amount: Decimal = _money()

    notes: str | None = None
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()

    items: list["OrderItem"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", ondelete="CASCADE", index=True)
    menu_item_id: int | None = Field(default=None, foreign_key="menu_items.id", ondelete="SET NULL")
    name_snapshot: str  # Menu item name at order time
    price_snapshot: Decimal = _money()  # Unit price at order time
    quantity: int
    status: OrderItemStatus = Field(default=OrderItemStatus.pending)
    notes: str | None = None
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()

    order: Order = Relationship(back_populates="items")


class AgingThreshold(TenantMixin, table=True):
    __tablename__ = "aging_thresholds"
    __table_args__ = (UniqueConstraint("tenant_id"),)

    id: int | None = Field(default=None, primary_key=True)
    warning_minutes: int
    critical_minutes: int
    is_active: bool = Field(default=True)
    updated_at: datetime = _timestamp()


class PaymentProviderConfig(TenantMixin, table=True):
    __tablename__ = "payment_providers"
    __table_args__ = (UniqueConstraint("tenant_id", "provider"),)

    id: int | None = Field(default=None, primary_key=True)
    provider: PaymentProvider
    key_id: str
    key_secret: str
    webhook_secret: str | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class EmailConfig(TenantMixin, table=True):
    __tablename__ = "email_configs"
    __table_args__ = (UniqueConstraint("tenant_id"),)

    id: int | None = Field(default=None, primary_key=True)
    email_address: str
    app_password: str
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)
    is_active: bool = Field(default=True)


# ============ UPDATE COMMANDS ============
# Each mutation of a persisted row goes through one of these shapes; the
# repository writes only the fields a command explicitly sets.

class OrderStatusChange(SQLModel):
    status: OrderStatus
    status_changed_at: datetime
    aging_level: AgingLevel | None = None


class OrderPaymentUpdate(SQLModel):
    payment_status: PaymentStatus
    payment_id: str | None = None
    payment_order_id: str | None = None


class OrderGatewayLink(SQLModel):
    payment_order_id: str


class OrderNotesUpdate(SQLModel):
    notes: str | None = None


class OrderAgingUpdate(SQLModel):
    aging_level: AgingLevel | None = None


OrderUpdate = (
    OrderStatusChange | OrderPaymentUpdate | OrderGatewayLink | OrderNotesUpdate | OrderAgingUpdate
)


class OrderItemStatusChange(SQLModel):
    status: OrderItemStatus


class TableCountsUpdate(SQLModel):
    active_orders_count: int
    current_status: TableState
    last_order_time: datetime | None = None


class AgingThresholdUpdate(SQLModel):
    warning_minutes: int = Field(ge=0)
    critical_minutes: int = Field(ge=0)


class TenantActiveUpdate(SQLModel):
    is_active: bool


# ============ REQUEST MODELS ============

class OrderItemCreate(SQLModel):
    menu_item_id: int
    quantity: int = 1
    notes: str | None = None


class OrderCreate(SQLModel):
    items: list[OrderItemCreate]
    payment_method: PaymentMethod = PaymentMethod.cash
    payment_provider: PaymentProvider | None = None  # Gateway for online payment, razorpay if omitted
    notes: str | None = None
    customer_email: str | None = None


class IntegrationOrderCreate(SQLModel):
    source_type: SourceType
    source_reference: str
    items: list[OrderItemCreate]
    tax_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    payment_provider: PaymentProvider | None = None
    notes: str | None = None


class OrderStatusUpdate(SQLModel):
    status: OrderStatus


class OrderItemStatusUpdate(SQLModel):
    status: OrderItemStatus


class GatewayOrderRequest(SQLModel):
    order_id: int
    restaurant_slug: str


class PaymentVerifyRequest(SQLModel):
    order_id: int
    restaurant_slug: str
    razorpay_payment_id: str
    razorpay_order_id: str
    razorpay_signature: str


# ============ READ VIEWS ============

class AgedOrder(SQLModel):
    id: int
    tenant_id: int
    table_id: int | None
    source_type: SourceType
    source_reference: str | None
    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    status_changed_at: datetime
    created_at: datetime
    minutes_elapsed: int
    aging_level: AgingLevel
    warning_minutes: int
    critical_minutes: int


class TableOccupancy(SQLModel):
    id: int
    tenant_id: int
    name: str
    identifier: str
    qr_url: str | None
    status: TableStatus
    total_active_orders: int
    pending_orders: int
    processing_orders: int
    ready_orders: int
    latest_order_time: datetime | None
    oldest_order_time: datetime | None
    has_overdue: bool
